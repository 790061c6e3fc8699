# Application Sync Package
from .authority import IdentityAuthority
from .reconciler import RemoteFactory, SyncReconciler

__all__ = ["IdentityAuthority", "RemoteFactory", "SyncReconciler"]
