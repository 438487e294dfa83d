# Copyright (c) 2025 sprowii
"""chatwarden - модерация групповых чатов: правила, предупреждения, антифлуд и captcha."""

__version__ = "0.1.0"
