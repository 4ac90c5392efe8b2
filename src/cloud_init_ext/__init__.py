"""cloud-init-ext - address allocation and configuration for booting nodes."""

from cloud_init_ext.errors import ProvisioningError
from cloud_init_ext.orchestrator import JobState, ProvisioningJob, ProvisioningOrchestrator

__version__ = "0.1.0"

__all__ = ["JobState", "ProvisioningError", "ProvisioningJob", "ProvisioningOrchestrator"]
