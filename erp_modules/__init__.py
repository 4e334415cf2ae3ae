"""
ERP Modules.

Thin orchestration layers over the kernel and engines.  Each module
contains:
- Domain models (the nouns)
- Workflows (state machines)
- Configuration schemas
- ORM persistence models
- The service that drives the workflow

Modules:
- Sales: customer orders, reservation on confirm, release on cancel
- Procurement: purchase orders, approval against credit limits, receiving

Stock quantities are owned by ``erp_kernel.services.InventoryLedger``.
"""
