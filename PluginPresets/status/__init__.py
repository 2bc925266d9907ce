"""Status codes and the exceptions raised by the stores and the engine.

- :mod:`PluginPresets.status.status` – ``Status`` codes, their user-facing messages and
  the ``BaseStatusException`` family (missing presets, failed saves, rejected applies).
"""
