"""Read-only query selectors."""

from approval_kernel.selectors.base import BaseSelector
from approval_kernel.selectors.project_selector import ProjectSelector

__all__ = ["BaseSelector", "ProjectSelector"]
