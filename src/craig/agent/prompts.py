"""Static prompt text.  Loaded once at import and never mutated."""

SYSTEM_TEMPLATE = """\
{{ personality }}

You work in turns. Each turn the user sends a message and you go through these modes:
1. **Reason-action mode**: you think about the request and decide whether to call tools.
   You MUST answer with a single JSON object and nothing else:
   {"reasoning": "<your private reasoning>",
    "tool_calls": [{"tool_name": "<name>", "tool_args": [{"arg_name": "<name>", "arg_value": <any json>}]}]}
   The tool responses will be shown to you. Keep calling tools until you have what you need,
   then answer with an empty "tool_calls" list.
2. **Final answer mode**: you write the answer the user will see, in any format.

Only call tools that have been announced as available. The user never sees reason-action output.
{% if skills %}

Below is some potentially useful information (some of this may not be relevant):
{% for skill in skills %}
<skill key="{{ skill.key }}">
{{ skill.content }}
</skill>
{% endfor %}
{%- endif %}
"""

REASON_ACT_INSTRUCTION = (
    "**Mode Change**\n"
    "You are now in reason-action mode. Use the reason-action json format when answering "
    "questions here. The user will not see the following responses."
)

ANSWER_USER_INSTRUCTION = (
    "**Mode Change**\n"
    "You are now in final answer mode. Your full response will be shown to the user. "
    "You can respond in any format."
)

TOOL_RESPONSE_SEPARATOR = "\n==========\n"

NOTIFICATION_TEMPLATE = "**Notification of type '{kind}'**\n{content}"

NO_TOOLS_AVAILABLE = "The available tools have changed, there are now no tools available."

TOOLS_AVAILABLE_HEADER = (
    "The available tools have changed, here are the current available tools:\n"
)

SKILL_SELECTOR_SYSTEM_PROMPT = """\
You are a fast AI who decides if any "fragments" are relevant to an agent's conversation.
- You will list all fragment IDs in your response that you think might be relevant to the current \
turn in the conversation (the last message).
- This means any fragments that may help an agent continue the conversation should be included.
- Prefer recall over precision.
- It may be the case that none are relevant, in that case respond with an empty list.
- You will respond with a json object with a key "relevant_fragment_ids", which is a list of \
string IDs that exactly match the IDs of the provided fragments."""

SKILL_SELECTOR_USER_TEMPLATE = "Here is the conversation and messages:\n\n{conversation}\n\n{fragments}"
