"""
Message Extraction Pipeline

Turns each inbound text frame into what the caller's callback receives:

    frame (str) --decode--> document (JSON) --extract--> record(s) --> callback

Extraction is driven by an ExtractionSchema declared once per monitor:
- keys: which top-level fields to keep, in that order
- array_key: optional nested array; one record per element

A declared key missing from a message is not an error; the record simply
omits it. A frame that is not JSON raises MalformedPayloadError, which the
read loop logs before moving on to the next frame.

Example:
    >>> schema = ExtractionSchema(keys=("a", "b"), array_key="data")
    >>> extract({"a": 1, "data": [{"a": 2, "b": 3}, {"a": 4}]}, schema)
    [{'a': 2, 'b': 3}, {'a': 4}]
"""

import inspect
import json
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Union

from core.exceptions import MalformedPayloadError
from core.logging import get_logger
from core.schemas import ExtractionSchema, UserDataEvent

Record = Dict[str, Any]
Extracted = Union[Record, List[Record]]


def extract_record(document: Mapping[str, Any], keys: Sequence[str]) -> Record:
    return {key: document[key] for key in keys if key in document}


def extract(document: Any, schema: ExtractionSchema) -> Extracted:
    """
    Project a decoded document onto the schema.

    Returns:
        One record, or a list of records when schema.array_key is set

    Raises:
        MalformedPayloadError: If the document does not have the declared shape
    """
    if not isinstance(document, dict):
        raise MalformedPayloadError(json.dumps(document)[:200], "expected a JSON object")

    if schema.array_key is None:
        return extract_record(document, schema.keys)

    elements = document.get(schema.array_key, [])
    if not isinstance(elements, list):
        raise MalformedPayloadError(json.dumps(document)[:200], f"'{schema.array_key}' is not an array")

    return [extract_record(element, schema.keys) for element in elements if isinstance(element, dict)]


class MessagePipeline:
    """
    Decode, extract and deliver frames for one monitor.

    The callback runs on the session's read task, one frame at a time, so
    invocations for a session never overlap and keep receipt order. A
    coroutine callback is awaited before the next frame is read.

    Attributes:
        schema: Extraction schema, fixed for the monitor's lifetime
        callback: Caller's function receiving a record or list of records
    """

    def __init__(self, schema: Optional[ExtractionSchema], callback: Callable[[Any], Any]):
        self.schema = schema
        self.callback = callback
        self.logger = get_logger(__name__)

    def decode(self, frame: str) -> Any:
        """
        Raises:
            MalformedPayloadError: If the frame is not valid JSON
        """
        try:
            return json.loads(frame)
        except json.JSONDecodeError as e:
            raise MalformedPayloadError(frame, str(e)) from e

    def transform(self, document: Any) -> Any:
        return extract(document, self.schema)

    async def process(self, frame: str) -> None:
        """Run one frame through decode, extract and the callback."""
        payload = self.transform(self.decode(frame))
        result = self.callback(payload)
        if inspect.isawaitable(result):
            await result


class UserDataPipeline(MessagePipeline):
    """
    Pipeline for the user data stream.

    Events differ too much per type for a single key list, so each frame is
    delivered whole as a UserDataEvent.
    """

    def __init__(self, callback: Callable[[UserDataEvent], Any]):
        super().__init__(None, callback)

    def transform(self, document: Any) -> UserDataEvent:
        if not isinstance(document, dict):
            raise MalformedPayloadError(json.dumps(document)[:200], "expected a JSON object")

        event = UserDataEvent.from_document(document)
        if event.event_type == "listenKeyExpired":
            self.logger.warning("Listen key expired; the user data stream must be re-established")
        return event
