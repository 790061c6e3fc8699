"""
Adapter Factory
Centralizes the logic for building stores and selecting the sync remote.
"""

from flashmark.application.config import AppConfig
from flashmark.application.sync.authority import IdentityAuthority
from flashmark.application.sync.reconciler import RemoteFactory, SyncReconciler
from flashmark.domain.ports import CardStore
from flashmark.domain.sync.ports import SyncRemote
from flashmark.infrastructure.adapters.http_remote import HttpSyncRemote
from flashmark.infrastructure.adapters.local_remote import LocalSyncRemote
from flashmark.infrastructure.store.sqlite_store import SqliteAuthorityStore, SqliteCardStore

LOCAL_SCHEME = "local://"
LOCAL_DEVICE_ID = "local"


def get_card_store(config: AppConfig) -> CardStore:
    return SqliteCardStore(config.database_path)


def get_authority(config: AppConfig) -> IdentityAuthority:
    return IdentityAuthority(SqliteAuthorityStore(config.authority_database_path))


def device_id_for(config: AppConfig) -> str:
    return config.device_id or LOCAL_DEVICE_ID


def make_remote_factory(config: AppConfig) -> RemoteFactory:
    """
    Returns a factory mapping an endpoint to a SyncRemote.

    `local://` runs the authority in-process against
    `authority_database_path`; anything else is an HTTP base URL.
    """

    def factory(endpoint: str) -> SyncRemote:
        if endpoint.startswith(LOCAL_SCHEME):
            return LocalSyncRemote(get_authority(config), device_id_for(config))
        return HttpSyncRemote(
            endpoint, token=config.device_token, timeout=config.request_timeout
        )

    return factory


def get_reconciler(config: AppConfig, store: CardStore | None = None) -> SyncReconciler:
    return SyncReconciler(
        store or get_card_store(config),
        device_id_for(config),
        make_remote_factory(config),
    )
