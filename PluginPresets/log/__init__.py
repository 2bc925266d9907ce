"""
Logging subsystem for PluginPresets.

Modules:

- :mod:`PluginPresets.log.log` – Root logger setup, the in-memory TankHandler and the Qt message bridge.
"""
