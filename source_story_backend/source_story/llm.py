import os, json, base64, logging
from .errors import GatewayFailure, MalformedResponse
from .models import ChatContext, GenerationResult, source_type_of
from .prompts import (
    ANALYSIS_PROMPT, URL_PROMPT_TEMPLATE, TEXT_PROMPT_TEMPLATE, GENERATION_SCHEMA,
    CHAT_SYSTEM_BASE, CHAT_STORY_LINE, CHAT_ANALYSIS_LINE, CHAT_SYSTEM_TAIL,
)
from .settings import GENERATION_MODEL, URL_GENERATION_MODEL, CHAT_MODEL

logger = logging.getLogger(__name__)

_client = None

def _get_client():
    global _client
    if _client is None:
        from openai import AsyncOpenAI
        api_key = os.getenv("OPENAI_API_KEY", "")
        if not api_key:
            raise RuntimeError("OPENAI_API_KEY is not set; please configure your .env")
        _client = AsyncOpenAI(api_key=api_key)
    return _client

def inline_base64(data: bytes) -> str:
    # payloads keep raw bytes; base64 only happens here, at the wire boundary
    return base64.b64encode(data).decode("ascii")

def to_data_url(data: bytes, media_type: str) -> str:
    return f"data:{media_type};base64,{inline_base64(data)}"

def build_generation_request(payload) -> dict:
    """Provider request for one payload variant."""
    prompt = ANALYSIS_PROMPT.format(source_label=source_type_of(payload).value)

    if payload.kind == "image":
        content = [
            {"type": "image_url", "image_url": {"url": to_data_url(payload.data, payload.media_type)}},
            {"type": "text", "text": prompt},
        ]
    elif payload.kind == "document":
        content = [
            {"type": "file", "file": {
                "filename": payload.filename,
                "file_data": to_data_url(payload.data, payload.media_type),
            }},
            {"type": "text", "text": prompt},
        ]
    elif payload.kind == "url":
        # search models fetch the page themselves and reject sampling/format options
        return {
            "model": URL_GENERATION_MODEL,
            "messages": [{"role": "user", "content": URL_PROMPT_TEMPLATE.format(url=payload.url, prompt=prompt)}],
            "web_search_options": {},
        }
    else:
        content = [{"type": "text", "text": TEXT_PROMPT_TEMPLATE.format(text=payload.text, prompt=prompt)}]

    return {
        "model": GENERATION_MODEL,
        "messages": [{"role": "user", "content": content}],
        "temperature": 0.8,
        "response_format": {"type": "json_schema", "json_schema": GENERATION_SCHEMA},
    }

def _strip_fences(text: str) -> str:
    text = text.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else ""
        if text.rstrip().endswith("```"):
            text = text.rstrip()[:-3]
    return text.strip()

def parse_generation_response(content) -> GenerationResult:
    if not content:
        raise MalformedResponse("Generation response was empty")
    try:
        body = json.loads(_strip_fences(content))
    except json.JSONDecodeError as e:
        raise MalformedResponse(f"Generation response is not valid JSON: {e}") from e
    if not isinstance(body, dict):
        raise MalformedResponse("Generation response is not a JSON object")
    for field in ("analysis", "story"):
        if not isinstance(body.get(field), str):
            raise MalformedResponse(f"Generation response is missing '{field}'")
    return GenerationResult(analysis=body["analysis"], story=body["story"])

async def generate_story(payload, client=None) -> GenerationResult:
    request = build_generation_request(payload)
    logger.info(f"Calling OpenAI ({request['model']}) to analyze {payload.kind} source")
    try:
        client = client or _get_client()
        resp = await client.chat.completions.create(**request)
        content = resp.choices[0].message.content
    except Exception as e:
        logger.error(f"OpenAI generation call failed: {str(e)}")
        raise GatewayFailure(str(e)) from e
    result = parse_generation_response(content)
    logger.info("Successfully received analysis and story from OpenAI")
    return result

def build_chat_system_prompt(context: ChatContext) -> str:
    instruction = CHAT_SYSTEM_BASE
    if context.story:
        instruction += CHAT_STORY_LINE.format(story=context.story)
    if context.analysis:
        instruction += CHAT_ANALYSIS_LINE.format(analysis=context.analysis)
    return instruction + CHAT_SYSTEM_TAIL

def build_chat_request(message: str, context: ChatContext) -> dict:
    parts = []
    if context.image is not None:
        parts.append({"type": "image_url", "image_url": {
            "url": to_data_url(context.image.data, context.image.media_type),
        }})
    parts.append({"type": "text", "text": message})
    return {
        "model": CHAT_MODEL,
        "messages": [
            {"role": "system", "content": build_chat_system_prompt(context)},
            {"role": "user", "content": parts},
        ],
    }

async def chat_reply(message: str, context: ChatContext, client=None) -> str:
    request = build_chat_request(message, context)
    logger.info(f"Calling OpenAI ({request['model']}) for chat reply")
    try:
        client = client or _get_client()
        resp = await client.chat.completions.create(**request)
        return resp.choices[0].message.content or ""
    except Exception as e:
        logger.error(f"OpenAI chat call failed: {str(e)}")
        raise GatewayFailure(str(e)) from e
