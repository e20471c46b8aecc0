"""Message classes of the Cloud Natural Language v1 API.

Built from the packaged schema description. Requests may be passed to the
client either as these messages or as plain dicts with the same field names.
"""

from cloud_language import schema


_protos = schema.load_protos(schema.PROTOS_PATH)

Document = _protos.message_class("Document")
Sentence = _protos.message_class("Sentence")
Entity = _protos.message_class("Entity")
Token = _protos.message_class("Token")
Sentiment = _protos.message_class("Sentiment")
PartOfSpeech = _protos.message_class("PartOfSpeech")
DependencyEdge = _protos.message_class("DependencyEdge")
EntityMention = _protos.message_class("EntityMention")
TextSpan = _protos.message_class("TextSpan")
ClassificationCategory = _protos.message_class("ClassificationCategory")

AnalyzeSentimentRequest = _protos.message_class("AnalyzeSentimentRequest")
AnalyzeSentimentResponse = _protos.message_class("AnalyzeSentimentResponse")
AnalyzeEntitiesRequest = _protos.message_class("AnalyzeEntitiesRequest")
AnalyzeEntitiesResponse = _protos.message_class("AnalyzeEntitiesResponse")
AnalyzeEntitySentimentRequest = _protos.message_class("AnalyzeEntitySentimentRequest")
AnalyzeEntitySentimentResponse = _protos.message_class("AnalyzeEntitySentimentResponse")
AnalyzeSyntaxRequest = _protos.message_class("AnalyzeSyntaxRequest")
AnalyzeSyntaxResponse = _protos.message_class("AnalyzeSyntaxResponse")
ClassifyTextRequest = _protos.message_class("ClassifyTextRequest")
ClassifyTextResponse = _protos.message_class("ClassifyTextResponse")
AnnotateTextRequest = _protos.message_class("AnnotateTextRequest")
AnnotateTextResponse = _protos.message_class("AnnotateTextResponse")

# AnnotateTextRequest.Features
Features = _protos.message_class("AnnotateTextRequest.Features")

__all__ = (
    "AnalyzeEntitiesRequest",
    "AnalyzeEntitiesResponse",
    "AnalyzeEntitySentimentRequest",
    "AnalyzeEntitySentimentResponse",
    "AnalyzeSentimentRequest",
    "AnalyzeSentimentResponse",
    "AnalyzeSyntaxRequest",
    "AnalyzeSyntaxResponse",
    "AnnotateTextRequest",
    "AnnotateTextResponse",
    "ClassificationCategory",
    "ClassifyTextRequest",
    "ClassifyTextResponse",
    "DependencyEdge",
    "Document",
    "Entity",
    "EntityMention",
    "Features",
    "PartOfSpeech",
    "Sentence",
    "Sentiment",
    "TextSpan",
    "Token",
)
