"""本地持久快照 -- 单 key 的 read/write/delete

每个操作员设备一个快照文件，保存 TimerSession；登出时删除。
写入采用临时文件 + replace，进程崩溃时不会留下半截 JSON。
"""

import json
from pathlib import Path
from typing import Any


class FileSnapshotStore:
    """基于 JSON 文件的单 key 快照存储"""

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    async def read(self) -> dict[str, Any] | None:
        """读取快照，不存在时返回 None

        Raises:
            ValueError: 快照内容不是合法 JSON 对象
        """
        if not self._path.exists():
            return None
        data = json.loads(self._path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError(f"snapshot {self._path} is not a JSON object")
        return data

    async def write(self, data: dict[str, Any]) -> None:
        """原子覆盖写入快照"""
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(data, ensure_ascii=False), encoding="utf-8")
        tmp_path.replace(self._path)

    async def delete(self) -> None:
        """删除快照（不存在时忽略）"""
        self._path.unlink(missing_ok=True)
