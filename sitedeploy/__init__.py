"""sitedeploy: provision multi-tenant WordPress sites onto a shared Kubernetes cluster."""

from sitedeploy.exceptions import SiteDeployError
from sitedeploy.models import TenantRequest
from sitedeploy.pipeline import PipelineResult, ProvisioningPipeline

__version__ = "0.3.0"

__all__ = ["PipelineResult", "ProvisioningPipeline", "SiteDeployError", "TenantRequest", "__version__"]
