"""Diagnostic agent run on threshold breach.

The agent is a tool-using conversation with Claude: it may run shell commands
on the host to investigate and finishes with a written diagnosis. Progress is
exposed as an async stream of plain-dict messages so callers can forward each
one as it arrives:

- ``{"type": "system", "subtype": "init", "session_id": ...}`` first
- ``{"type": "assistant", "message": {...}}`` for every model turn
- ``{"type": "user", "message": {...}}`` carrying tool results
- ``{"type": "result", ...}`` last, signalling completion
"""

import asyncio
import platform
import time
import uuid
from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any

import structlog
from anthropic import AsyncAnthropic

from premortem.collector import SystemMetrics
from premortem.config import AgentConfig
from premortem.monitor import ThresholdBreach

log = structlog.get_logger()

AgentMessage = dict[str, Any]

MAX_TOKENS = 4096
MAX_TOOL_OUTPUT = 20000  # Characters of command output returned to the model

SYSTEM_PROMPT = (
    "You are an on-call site reliability engineer diagnosing a live machine that "
    "has just breached a resource threshold. Use the run_command tool to inspect "
    "the system. Work quickly and do not ask questions."
)

RUN_COMMAND_TOOL = {
    "name": "run_command",
    "description": (
        "Run a shell command on the affected host and return its combined "
        "stdout and stderr. Use it for ps, top, lsof, strace, dtruss, py-spy, "
        "df, du, vmstat and similar diagnostics."
    ),
    "input_schema": {
        "type": "object",
        "properties": {
            "command": {"type": "string", "description": "The shell command to execute"},
        },
        "required": ["command"],
    },
}


def generate_prompt(
    breach: ThresholdBreach,
    metrics: SystemMetrics,
    custom_prompt: str | None = None,
) -> str:
    """Build the diagnostic request for a breach."""
    breach_description = (
        f"CRITICAL: {breach.type.value} usage at {breach.current_value}% "
        f"(threshold: {breach.threshold_value}%)"
    )

    metrics_formatted = f"""
System Metrics at {breach.timestamp.isoformat()}:
- Operating System: {platform.system()} ({platform.release()})
- Memory: {metrics.memory_percent}%
- Disk: {metrics.disk_percent}%
- CPU: {metrics.cpu_percent}%
- Processes: {metrics.process_count}
"""

    diagnostic_request = f"""
The system has breached a critical threshold. Please diagnose what is happening on this machine:

{breach_description}

{metrics_formatted}

Investigate and provide a detailed analysis of what might be causing this issue. Do NOT stop to ask for permission or ask questions -- there is not enough time. This is extremely urgent. Your investigation should:
- identify which processes are running that are causing problems
- get as granular as possible, down to specific function calls
- use tools like os tools like strace, dtruss, and lsof
- use tools like py-spy or node inspect

Produce a paragraph detailing what is happening with as much context as possible"""

    if custom_prompt:
        return f"{custom_prompt}\n\n{diagnostic_request}"
    return diagnostic_request


async def run_command(command: str, cwd: Path | None, timeout: int) -> tuple[str, bool]:
    """Execute a shell command for the agent.

    Returns:
        (output, is_error) where output is stdout plus any stderr
    """
    if not command.strip():
        return "Error: No command provided", True

    try:
        proc = await asyncio.create_subprocess_shell(
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            stdin=asyncio.subprocess.DEVNULL,
            cwd=str(cwd) if cwd else None,
        )
    except OSError as e:
        return f"Error executing command: {e}", True

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        return f"Error: Command timed out after {timeout} seconds", True

    output = stdout.decode("utf-8", errors="replace")
    if stderr:
        output += f"\nSTDERR:\n{stderr.decode('utf-8', errors='replace')}"
    output = output.strip() or "(no output)"
    if len(output) > MAX_TOOL_OUTPUT:
        output = output[:MAX_TOOL_OUTPUT] + "\n... (output truncated)"

    return output, proc.returncode != 0


def _block_to_dict(block: Any) -> dict:
    """Convert a response content block to a request-safe dict."""
    if block.type == "text":
        return {"type": "text", "text": block.text}
    if block.type == "tool_use":
        return {"type": "tool_use", "id": block.id, "name": block.name, "input": block.input}
    return block.model_dump(mode="json", exclude_none=True)


async def run_agent(
    prompt: str,
    api_key: str,
    config: AgentConfig,
    cwd: Path | None = None,
) -> AsyncIterator[AgentMessage]:
    """Run a diagnostic session, yielding messages as they are produced.

    The stream always ends with a "result" message unless an API error is
    raised, which propagates to the caller.
    """
    client = AsyncAnthropic(api_key=api_key)
    session_id = str(uuid.uuid4())
    started = time.monotonic()
    usage = {"input_tokens": 0, "output_tokens": 0}

    log.info("agent_starting", model=config.model, session_id=session_id)

    yield {
        "type": "system",
        "subtype": "init",
        "session_id": session_id,
        "model": config.model,
        "cwd": str(cwd) if cwd else None,
        "tools": [RUN_COMMAND_TOOL["name"]],
    }
    log.info("agent_session_started", session_id=session_id)

    messages: list[dict] = [{"role": "user", "content": prompt}]
    final_text = ""
    num_turns = 0
    finished = False

    while num_turns < config.max_turns:
        num_turns += 1
        response = await client.messages.create(
            model=config.model,
            max_tokens=MAX_TOKENS,
            system=SYSTEM_PROMPT,
            tools=[RUN_COMMAND_TOOL],
            messages=list(messages),
        )
        usage["input_tokens"] += response.usage.input_tokens
        usage["output_tokens"] += response.usage.output_tokens

        content = [_block_to_dict(block) for block in response.content]
        messages.append({"role": "assistant", "content": content})
        yield {
            "type": "assistant",
            "session_id": session_id,
            "message": {
                "id": response.id,
                "role": "assistant",
                "model": response.model,
                "content": content,
                "stop_reason": response.stop_reason,
            },
        }

        tool_uses = [block for block in response.content if block.type == "tool_use"]
        if not tool_uses:
            final_text = "\n".join(
                block.text for block in response.content if block.type == "text"
            ).strip()
            finished = True
            break

        results = []
        for block in tool_uses:
            log.info("agent_tool_used", tool=block.name, session_id=session_id)
            if block.name == RUN_COMMAND_TOOL["name"]:
                output, is_error = await run_command(
                    str(block.input.get("command", "")), cwd, config.command_timeout
                )
            else:
                output, is_error = f"Error: Unknown tool {block.name!r}", True
            results.append(
                {
                    "type": "tool_result",
                    "tool_use_id": block.id,
                    "content": output,
                    "is_error": is_error,
                }
            )

        messages.append({"role": "user", "content": results})
        yield {
            "type": "user",
            "session_id": session_id,
            "message": {"role": "user", "content": results},
        }

    duration_ms = int((time.monotonic() - started) * 1000)
    log.info("agent_session_ended", session_id=session_id, turns=num_turns, finished=finished)

    yield {
        "type": "result",
        "subtype": "success" if finished else "error_max_turns",
        "is_error": not finished,
        "result": final_text,
        "num_turns": num_turns,
        "duration_ms": duration_ms,
        "usage": usage,
        "session_id": session_id,
    }
