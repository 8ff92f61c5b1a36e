"""
Estimation services -- orchestration over a persisted project document.
"""

from estimate_services.project_estimate import ProjectEstimate, ProjectEstimateService

__all__ = ["ProjectEstimate", "ProjectEstimateService"]
