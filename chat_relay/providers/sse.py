"""SSE 帧累积器。

传输层的分块边界与协议帧边界无关：一个 JSON 载荷可能被拆在两个分块里，
一个分块也可能包含多帧。SSEFrameDecoder 缓存未以换行结束的半行，
只在拿到完整行后才交出 `data:` 载荷。
"""

from typing import List

DONE_SENTINEL = "[DONE]"


class SSEFrameDecoder:
    def __init__(self) -> None:
        self._buffer = ""

    def feed(self, text: str) -> List[str]:
        """喂入一段文本，返回其中已完整的 data 载荷（按到达顺序）。"""

        if not text:
            return []
        self._buffer += text
        *lines, self._buffer = self._buffer.split("\n")
        frames: List[str] = []
        for line in lines:
            data = self._parse_line(line)
            if data is not None:
                frames.append(data)
        return frames

    def flush(self) -> List[str]:
        """流结束时处理缓冲中最后一个未以换行结束的行。"""

        tail, self._buffer = self._buffer, ""
        data = self._parse_line(tail)
        return [data] if data is not None else []

    @staticmethod
    def _parse_line(line: str):
        line = line.rstrip("\r")
        if not line.strip() or line.startswith(":"):
            return None
        if not line.startswith("data:"):
            # event:/id:/retry: 等字段与内容增量无关
            return None
        data = line[5:].strip()
        return data or None
