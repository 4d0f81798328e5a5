"""
本地 Mock OpenAI-compatible LLM server。

用途：
- 在没有真实 LLM 网关的情况下，本地跑通 summary / 相关性信号 / 代码生成三类 JSON 输出
- 按 system prompt 里内嵌的 JSON schema 判断要返回哪种结构

启动：
  python -m codeassist.dev.mock_openai_server
"""

from __future__ import annotations

import json
import re
from collections.abc import Sequence

import uvicorn
from fastapi import FastAPI
from pydantic import BaseModel, Field

from codeassist.indexing.chunker import tokenize
from codeassist.llm.client import ChatMessage

_QUERY_LINE = re.compile(r'^QUERY: "(?P<query>.*)"$', re.MULTILINE)
_CODE_BLOCK = re.compile(r"```[^\n]*\n(?P<body>.*?)```", re.DOTALL)


class ChatCompletionRequest(BaseModel):
    model: str
    messages: list[ChatMessage] = Field(default_factory=list)


def _first_code_line(prompt: str) -> str:
    match = _CODE_BLOCK.search(prompt)
    body = match.group("body") if match else prompt
    for line in body.splitlines():
        if line.strip():
            return line.strip()
    return "empty chunk"


def _mock_signals(prompt: str) -> dict[str, float]:
    """关键字重合度当作 semantic/functional，quality 固定 0.5。"""
    match = _QUERY_LINE.search(prompt)
    query_tokens = set(tokenize(match.group("query"))) if match else set()
    code_tokens = set(tokenize(prompt if match is None else prompt[match.end() :]))
    overlap = len(query_tokens & code_tokens) / len(query_tokens) if query_tokens else 0.0
    return {"semantic": round(overlap, 2), "functional": round(overlap, 2), "quality": 0.5}


def _decide_mock_response(messages: Sequence[ChatMessage]) -> str:
    system = "\n".join(m.content for m in messages if m.role == "system")
    user_texts = [m.content for m in messages if m.role == "user"]
    if not user_texts:
        raise ValueError("Mock server expects at least one user message")
    prompt = "\n".join(user_texts)

    if '"summary"' in system:
        return json.dumps({"summary": f"[MOCK] {_first_code_line(prompt)[:120]}"})
    if '"semantic"' in system:
        return json.dumps(_mock_signals(prompt))
    if '"code"' in system:
        instruction = prompt.splitlines()[0].removeprefix("Instruction:").strip()
        return json.dumps({"code": f"# [MOCK] {instruction}\n"})

    # 兜底：空对象（由调用方的 schema 校验决定是否可用）
    return "{}"


app = FastAPI(title="Mock OpenAI-compatible LLM", version="0.1.0")


@app.post("/v1/chat/completions")
async def chat_completions(req: ChatCompletionRequest) -> dict[str, object]:
    content = _decide_mock_response(messages=req.messages)
    return {
        "id": "chatcmpl-mock",
        "object": "chat.completion",
        "created": 0,
        "model": req.model,
        "choices": [{"index": 0, "finish_reason": "stop", "message": {"role": "assistant", "content": content}}],
    }


def main() -> None:
    uvicorn.run(app, host="127.0.0.1", port=9001)


if __name__ == "__main__":
    main()
