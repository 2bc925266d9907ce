"""
Settings package: configuration API and presets.

This package provides:

- :mod:`PluginPresets.settings.lib` – Application paths and the validated app-wide configuration.
- :mod:`PluginPresets.settings.presets` – The preset model and the shared preset store.
"""
