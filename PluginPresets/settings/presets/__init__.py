"""Presets subpackage: named component sets and their on-disk records.

This package provides:
    - lib: the Preset model, file-name sanitizing and the file-per-preset PresetStore
"""
