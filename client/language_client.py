"""Command line client for the Cloud Natural Language service.

Runs one analysis on a text or file, or a set of sample texts through every operation
"""

import argparse
import json
import logging
from pathlib import Path

from google.protobuf import json_format

from cloud_language import LanguageServiceClient, Transport, enums


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

OPERATIONS = [
    "analyze_sentiment",
    "analyze_entities",
    "analyze_entity_sentiment",
    "analyze_syntax",
    "classify_text",
    "annotate_text",
]

ALL_FEATURES = {
    "extract_syntax": True,
    "extract_entities": True,
    "extract_document_sentiment": True,
    "extract_entity_sentiment": True,
    "classify_text": True,
}


def build_request(operation: str, text: str, encoding: str = "UTF8", language: str | None = None) -> dict:
    """Build the request dict for an operation.

    Args:
        operation: Client method name
        text: Plain text content to analyze
        encoding: Encoding type used for offsets
        language: Optional ISO-639-1 language code; detected by the service if omitted

    Returns:
        Request dict accepted by the client
    """
    document = {"content": text, "type": enums.Document.Type.PLAIN_TEXT}
    if language:
        document["language"] = language

    request = {"document": document}
    if operation != "classify_text":
        request["encoding_type"] = enums.EncodingType[encoding]
    if operation == "annotate_text":
        request["features"] = dict(ALL_FEATURES)
    return request


def analyze(client: LanguageServiceClient, operation: str, text: str, **request_options) -> dict:
    """Run one operation and return the response as a dict."""
    request = build_request(operation, text, **request_options)
    [response] = getattr(client, operation)(request).result()
    return json_format.MessageToDict(response, preserving_proto_field_name=True)


def run_samples(client: LanguageServiceClient) -> None:
    """Run every operation over a few sample texts."""
    samples = [
        {"text": "Google, headquartered in Mountain View, unveiled the new Android phone.", "description": "Entities"},
        {"text": "The food was wonderful but the service was painfully slow.", "description": "Mixed sentiment"},
        {
            "text": "The central bank raised interest rates by a quarter point on Wednesday, "
            "citing persistent inflation in housing and energy prices across the region.",
            "description": "Classification",
        },
    ]

    logger.info("\n" + "=" * 60)
    logger.info("RUNNING SAMPLES")
    logger.info("=" * 60)

    for i, sample in enumerate(samples, 1):
        logger.info(f"\nSample {i}: {sample['description']}")
        logger.info(f"Input: {sample['text']}")
        logger.info("-" * 40)

        for operation in OPERATIONS:
            try:
                result = analyze(client, operation, sample["text"])
            except Exception as e:
                logger.error(f"   {operation} failed: {e!s}")
                continue

            if "document_sentiment" in result:
                sentiment = result["document_sentiment"]
                logger.info(f"   {operation}: score {sentiment.get('score', 0):.2f}, magnitude {sentiment.get('magnitude', 0):.2f}")
            if "entities" in result:
                names = [f"{e.get('name', '')} ({e.get('type', 'UNKNOWN')})" for e in result["entities"][:5]]
                logger.info(f"   {operation}: {', '.join(names) or 'no entities'}")
            if "tokens" in result:
                logger.info(f"   {operation}: {len(result['tokens'])} tokens")
            if "categories" in result:
                for category in result["categories"]:
                    logger.info(f"   {operation}: {category.get('name', '')} {category.get('confidence', 0):.2f}")

    logger.info("\n" + "=" * 60)
    logger.info("SAMPLES COMPLETE")
    logger.info("=" * 60)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Cloud Natural Language client")
    parser.add_argument("--endpoint", default=None, help="API endpoint host name")
    parser.add_argument("--port", type=int, default=None, help="API endpoint port")
    parser.add_argument("--protocol", default="grpc", choices=[t.value for t in Transport], help="Transport to use")
    parser.add_argument("--key-file", default=None, help="Service account key file")
    parser.add_argument("--samples", action="store_true", help="Run every operation over sample texts")
    parser.add_argument("--text", type=str, help="Text to analyze")
    parser.add_argument("--file", type=Path, help="File whose content to analyze")
    parser.add_argument("--operation", default="annotate_text", choices=OPERATIONS, help="Operation to run")
    parser.add_argument("--encoding", default="UTF8", choices=[e.name for e in enums.EncodingType], help="Offset encoding")
    parser.add_argument("--language", default=None, help="Document language code")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    text = args.text
    if args.file is not None:
        text = args.file.read_text(encoding="utf-8")

    if not args.samples and not text:
        logger.info("Please specify --samples, --text or --file")
        return 2

    client = LanguageServiceClient(
        api_endpoint=args.endpoint,
        port=args.port,
        transport=args.protocol,
        key_filename=args.key_file,
        lib_name="language-cli",
        lib_version="1.0.0",
    )
    with client:
        if args.samples:
            run_samples(client)
        else:
            result = analyze(client, args.operation, text, encoding=args.encoding, language=args.language)
            logger.info(json.dumps(result, indent=2, ensure_ascii=False))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
