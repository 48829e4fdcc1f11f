"""Agent orchestration core: sagas with compensation and workflow graphs."""
from agent_orchestrator.saga import SagaCoordinator
from agent_orchestrator.workflow import WorkflowManager

__version__ = "0.1.0"

__all__ = ["SagaCoordinator", "WorkflowManager", "__version__"]
