"""Business metrics for the Agent CLI.

Defines OpenTelemetry metrics for:
- Chat: User input processing
- LLM: Request latency and tool calls
- Tools: Execution counts, latency and failures

Without a configured MeterProvider these instruments are no-ops.
"""

from opentelemetry import metrics

meter = metrics.get_meter("agent_cli")

# =============================================================================
# CHAT METRICS
# =============================================================================

chat_messages_received = meter.create_counter(
    name="agent_cli.chat.messages_received",
    description="Total chat messages received from the user",
    unit="1",
)

chat_turn_duration = meter.create_histogram(
    name="agent_cli.chat.turn_duration",
    description="Duration of a turn (from user input back to idle)",
    unit="ms",
)

# =============================================================================
# LLM METRICS
# =============================================================================

llm_request_count = meter.create_counter(
    name="agent_cli.llm.request_count",
    description="Total LLM requests made",
    unit="1",
)

llm_request_time = meter.create_histogram(
    name="agent_cli.llm.request_time",
    description="Time for LLM requests (request sent to stream end)",
    unit="ms",
)

llm_tool_calls = meter.create_counter(
    name="agent_cli.llm.tool_calls",
    description="Total tool calls requested by the LLM",
    unit="1",
)

# =============================================================================
# TOOL METRICS
# =============================================================================

tool_execution_count = meter.create_counter(
    name="agent_cli.tools.execution_count",
    description="Total tool executions",
    unit="1",
)

tool_execution_time = meter.create_histogram(
    name="agent_cli.tools.execution_time",
    description="Time to execute a tool",
    unit="ms",
)

tool_execution_errors = meter.create_counter(
    name="agent_cli.tools.execution_errors",
    description="Total tool executions that failed",
    unit="1",
)

tool_confirmations = meter.create_counter(
    name="agent_cli.tools.confirmations",
    description="Confirmation decisions for gated tools",
    unit="1",
)
