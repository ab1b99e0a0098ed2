"""CLI 入口模块 -- python -m officeflow.core <command>

支持的命令：
  repair-events  用真实内容修复事件中的占位符文案
  reconcile      修正 Request/Task 终态不一致
"""

import asyncio
import sys

from .config import get_db_path

_COMMANDS = {
    "repair-events": "用真实内容修复事件中的占位符文案",
    "reconcile": "修正 Request/Task 终态不一致",
}


def _print_usage() -> None:
    print("用法: python -m officeflow.core <command>")
    print("命令:")
    for name, desc in _COMMANDS.items():
        print(f"  {name:<15}{desc}")


def main() -> None:
    """CLI 主入口"""
    if len(sys.argv) < 2:
        _print_usage()
        sys.exit(1)

    command = sys.argv[1]

    if command == "repair-events":
        asyncio.run(repair_events())
    elif command == "reconcile":
        asyncio.run(reconcile_pairs())
    else:
        print(f"未知命令: {command}")
        print(f"可用命令: {', '.join(_COMMANDS)}")
        sys.exit(1)


async def repair_events() -> None:
    """执行占位符修复"""
    from .repair import repair_all_placeholder_events
    from .store import create_store_group

    db_path = get_db_path()
    print(f"数据库路径: {db_path}")

    store_group = await create_store_group(db_path)
    try:
        fixed = await repair_all_placeholder_events(
            store_group.conn,
            store_group.event_store,
            store_group.request_store,
        )
        print(f"修复完成，改写 {fixed} 条事件")
    finally:
        await store_group.conn.close()


async def reconcile_pairs() -> None:
    """执行终态一致性检查"""
    from .repair import reconcile
    from .store import create_store_group

    db_path = get_db_path()
    print(f"数据库路径: {db_path}")

    store_group = await create_store_group(db_path)
    try:
        fixed = await reconcile(store_group.conn)
        print(f"检查完成，修正 {fixed} 条记录")
    finally:
        await store_group.conn.close()


if __name__ == "__main__":
    main()
