from rolesync.domain.entitlement.util.di.provider import EntitlementProvider

__all__ = ["EntitlementProvider"]
