"""CLI 入口模块 -- python -m duraflow <command>

支持的命令：
  replay <module:orchestrator> <history.json> [input.json]
      回放一次编排并输出 OrchestratorState JSON
  dispatch-entity <module:entity> <batch.json>
      执行一批实体操作并输出 EntityBatchResult JSON
      batch.json 格式: {"entity_id": {"name": ..., "key": ...}, "scheduler_state": {...}}
"""

import importlib
import json
import sys
from pathlib import Path
from typing import Any

from .entities import Entity
from .exceptions import NonDeterminismError
from .logging_config import setup_logging
from .models import EntityId, SchedulerState
from .orchestration import Orchestrator

USAGE = """用法: python -m duraflow <command>
命令:
  replay <module:orchestrator> <history.json> [input.json]
  dispatch-entity <module:entity> <batch.json>"""

EXIT_USAGE = 1
EXIT_NON_DETERMINISM = 2


def load_object(target: str) -> Any:
    """按 module:attr 加载对象"""
    module_name, sep, attr = target.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"对象路径格式应为 module:attr，实际为 {target!r}")
    module = importlib.import_module(module_name)
    obj: Any = module
    for part in attr.split("."):
        obj = getattr(obj, part)
    return obj


def main(argv: list[str] | None = None) -> int:
    """CLI 主入口"""
    args = sys.argv[1:] if argv is None else argv
    if not args:
        print(USAGE)
        return EXIT_USAGE

    setup_logging()
    command, rest = args[0], args[1:]

    if command == "replay" and len(rest) in (2, 3):
        return replay(*rest)
    if command == "dispatch-entity" and len(rest) == 2:
        return dispatch_entity(*rest)

    print(f"未知命令或参数错误: {' '.join(args)}")
    print(USAGE)
    return EXIT_USAGE


def replay(target: str, history_path: str, input_path: str | None = None) -> int:
    """回放一次编排"""
    fn = load_object(target)
    orch = fn if isinstance(fn, Orchestrator) else Orchestrator(fn)

    history = Path(history_path).read_text(encoding="utf-8")
    input_value = None
    if input_path is not None:
        input_value = json.loads(Path(input_path).read_text(encoding="utf-8"))

    try:
        state = orch.run(history, input_value)
    except NonDeterminismError as e:
        print(json.dumps({"error": str(e), "error_type": "NonDeterminismError"}, ensure_ascii=False))
        return EXIT_NON_DETERMINISM

    print(json.dumps(state.to_wire(), ensure_ascii=False, indent=2))
    return 0


def dispatch_entity(target: str, batch_path: str) -> int:
    """执行一批实体操作"""
    definition = load_object(target)
    if not isinstance(definition, Entity):
        print(f"{target} 不是 Entity 定义")
        return EXIT_USAGE

    batch = json.loads(Path(batch_path).read_text(encoding="utf-8"))
    entity_id = EntityId.model_validate(batch["entity_id"])
    scheduler_state = SchedulerState.model_validate(batch.get("scheduler_state", {}))

    result = definition.dispatch(entity_id, scheduler_state)
    print(json.dumps(result.model_dump(mode="json"), ensure_ascii=False, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
