from tenantbook.admin.api import TenantAdminAPI
from tenantbook.admin.reports import AppointmentStats, compute_stats, split_by_time

__all__ = ["TenantAdminAPI", "AppointmentStats", "compute_stats", "split_by_time"]
