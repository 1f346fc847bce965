"""Shared utility helpers."""

from todo_list_provider.utils.paths import database_path, platform_data_directory

__all__ = [
    "database_path",
    "platform_data_directory",
]
