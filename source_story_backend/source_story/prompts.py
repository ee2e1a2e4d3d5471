ANALYSIS_PROMPT = """Analyze the mood, scene, and details of this {source_label}.
Then, write a captivating opening paragraph (about 100-150 words) for a story set in this world or inspired by this content.
The tone should match the atmosphere of the source.
Return the response as a JSON object with two fields: 'analysis' (a brief description of the mood/scene/content) and 'story' (the opening paragraph)."""


URL_PROMPT_TEMPLATE = """Based on the content of this URL: {url}, {prompt}"""


TEXT_PROMPT_TEMPLATE = """Content: {text}

{prompt}"""


GENERATION_SCHEMA = {
    "name": "story_opening",
    "strict": True,
    "schema": {
        "type": "object",
        "properties": {
            "analysis": {"type": "string"},
            "story": {"type": "string"},
        },
        "required": ["analysis", "story"],
        "additionalProperties": False,
    },
}


CHAT_SYSTEM_BASE = "You are a creative writing assistant. "
CHAT_STORY_LINE = 'The user is working on a story that starts like this: "{story}". '
CHAT_ANALYSIS_LINE = 'The visual mood of the scene is: "{analysis}". '
CHAT_SYSTEM_TAIL = "Help the user expand the world, brainstorm characters, or answer questions about the scene."

CHAT_FALLBACK_REPLY = "I am sorry, I could not process that."
CHAT_ERROR_REPLY = "Something went wrong. Please try again."
