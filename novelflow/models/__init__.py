"""Pydantic models for the novelflow store."""

from novelflow.models.config import GlobalConfig, GlobalConfigUpdate, Theme
from novelflow.models.exchange import (
    EXPORT_VERSION,
    ExportedNode,
    ExportedProject,
    ExportedProjectInfo,
    ExportedSetting,
    ExportedSettingPrompt,
    ExportedSettingRelation,
    ExportedSettings,
    ExportedWorkflow,
    ExportedWorkflowInfo,
    WorkflowSnapshot,
)
from novelflow.models.execution import (
    TERMINAL_EXECUTION_STATUSES,
    Execution,
    ExecutionCreate,
    ExecutionStatus,
    ExecutionUpdate,
    NodeResult,
    NodeResultCreate,
    NodeResultStatus,
    NodeResultUpdate,
)
from novelflow.models.node import (
    Node,
    NodeCreate,
    NodeReorder,
    NodeRestore,
    NodeType,
    NodeUpdate,
)
from novelflow.models.project import (
    GlobalStats,
    Project,
    ProjectCreate,
    ProjectStats,
    ProjectUpdate,
)
from novelflow.models.setting import (
    InjectionMode,
    Setting,
    SettingCategory,
    SettingCreate,
    SettingPrompt,
    SettingPromptCreate,
    SettingPromptUpdate,
    SettingPriority,
    SettingRelation,
    SettingRelationCreate,
    SettingRelationUpdate,
    SettingTreeNode,
    SettingUpdate,
)
from novelflow.models.workflow import (
    Workflow,
    WorkflowCreate,
    WorkflowUpdate,
    WorkflowVersion,
    WorkflowVersionCreate,
)

__all__ = [
    # Projects
    "Project",
    "ProjectCreate",
    "ProjectUpdate",
    "ProjectStats",
    "GlobalStats",
    # Workflows
    "Workflow",
    "WorkflowCreate",
    "WorkflowUpdate",
    "WorkflowVersion",
    "WorkflowVersionCreate",
    # Nodes
    "Node",
    "NodeCreate",
    "NodeUpdate",
    "NodeRestore",
    "NodeReorder",
    "NodeType",
    # Settings
    "Setting",
    "SettingCreate",
    "SettingUpdate",
    "SettingTreeNode",
    "SettingCategory",
    "InjectionMode",
    "SettingPriority",
    "SettingPrompt",
    "SettingPromptCreate",
    "SettingPromptUpdate",
    "SettingRelation",
    "SettingRelationCreate",
    "SettingRelationUpdate",
    # Executions
    "Execution",
    "ExecutionCreate",
    "ExecutionUpdate",
    "ExecutionStatus",
    "TERMINAL_EXECUTION_STATUSES",
    "NodeResult",
    "NodeResultCreate",
    "NodeResultUpdate",
    "NodeResultStatus",
    # Global config
    "GlobalConfig",
    "GlobalConfigUpdate",
    "Theme",
    # Import / export
    "EXPORT_VERSION",
    "WorkflowSnapshot",
    "ExportedWorkflow",
    "ExportedWorkflowInfo",
    "ExportedNode",
    "ExportedSetting",
    "ExportedSettingPrompt",
    "ExportedSettingRelation",
    "ExportedSettings",
    "ExportedProject",
    "ExportedProjectInfo",
]
