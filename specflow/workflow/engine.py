"""Workflow engine wiring.

Builds the store, router and handoff engine for a project and hands the
same store to each of them. Nothing here holds global state; every CLI
invocation builds a fresh engine.
"""

import logging
from dataclasses import dataclass
from pathlib import Path

from specflow.lib.config import ProjectConfig, load_project_config
from specflow.workflow.context import ContextPreparer
from specflow.workflow.handoff import HandoffEngine
from specflow.workflow.router import TaskRouter
from specflow.workflow.store import WorkflowStateStore

logger = logging.getLogger(__name__)


@dataclass
class WorkflowEngine:
    config: ProjectConfig
    store: WorkflowStateStore
    router: TaskRouter
    handoff: HandoffEngine

    @classmethod
    def from_config(cls, config: ProjectConfig, preparer: ContextPreparer | None = None) -> "WorkflowEngine":
        store = WorkflowStateStore.from_config(config)
        router = TaskRouter(store, weights=config.weights, profiles=config.agents)
        handoff = HandoffEngine(store, router, preparer=preparer)
        logger.debug(f"Engine ready: specs={config.specs_dir} state={config.state_dir}")
        return cls(config=config, store=store, router=router, handoff=handoff)


def open_engine(project_dir: Path) -> WorkflowEngine:
    return WorkflowEngine.from_config(load_project_config(project_dir))
