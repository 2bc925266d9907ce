"""Test suite for PluginPresets.

The data directory is redirected before the package is imported so the module level
settings never touch the real application data.
"""
import os
import tempfile

os.environ.setdefault('PLUGINPRESETS_DATA_DIR', tempfile.mkdtemp(prefix='pluginpresets_tests_'))
os.environ.setdefault('QT_QPA_PLATFORM', 'offscreen')
