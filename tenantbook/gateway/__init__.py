from tenantbook.gateway.freebusy import FreeBusyGateway, FreeSlots, LeadConnectorGateway

__all__ = ["FreeBusyGateway", "FreeSlots", "LeadConnectorGateway"]
