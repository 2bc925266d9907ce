"""UI boundary: application-wide signals consumed by the management window.

- :mod:`PluginPresets.ui.actions` – Qt signal hub shared by the engine, stores and any front end.
"""
