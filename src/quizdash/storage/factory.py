from loguru import logger

from quizdash.config.settings import AppSettings
from quizdash.models.enums import StorageType
from quizdash.storage.csv_storage import CsvStorage
from quizdash.storage.git_storage import GitSyncStorage
from quizdash.storage.interface import Storage
from quizdash.storage.supabase_storage import SupabaseStorage


def create_storage(app_settings: AppSettings) -> Storage:
    """Builds the store selected by `storage_type`. Raises ConfigurationError on missing credentials."""
    storage_type = app_settings.storage_type
    logger.info(f"Using {storage_type.value} storage")

    if storage_type == StorageType.GITHUB:
        return GitSyncStorage(
            data_path=app_settings.data_path,
            token=app_settings.github_token,
            owner=app_settings.github_owner,
            repo=app_settings.github_repo,
            branch=app_settings.github_branch,
        )
    if storage_type == StorageType.DATABASE:
        return SupabaseStorage(url=app_settings.supabase_url, key=app_settings.supabase_key)
    return CsvStorage(data_path=app_settings.data_path)
