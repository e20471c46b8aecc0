"""Enum constants of the Cloud Natural Language v1 API.

Values come from the packaged schema description, so they always match the
wire numbers the service expects.
"""

import enum

from cloud_language import schema


_protos = schema.load_protos(schema.PROTOS_PATH)


def _int_enum(qualname: str) -> type[enum.IntEnum]:
    descriptor = _protos.enum_descriptor(qualname)
    return enum.IntEnum(
        qualname.rsplit(".", 1)[-1],
        [(value.name, value.number) for value in descriptor.values],
        module=__name__,
        qualname=qualname,
    )


# Text encoding used to compute offsets in the response. NONE means offsets are not computed.
EncodingType = _int_enum("EncodingType")


class Document:
    Type = _int_enum("Document.Type")


class Entity:
    Type = _int_enum("Entity.Type")


class EntityMention:
    Type = _int_enum("EntityMention.Type")


class PartOfSpeech:
    """Part of speech tag and morphology features of a token."""

    Tag = _int_enum("PartOfSpeech.Tag")
    Aspect = _int_enum("PartOfSpeech.Aspect")
    Case = _int_enum("PartOfSpeech.Case")
    Form = _int_enum("PartOfSpeech.Form")
    Gender = _int_enum("PartOfSpeech.Gender")
    Mood = _int_enum("PartOfSpeech.Mood")
    Number = _int_enum("PartOfSpeech.Number")
    Person = _int_enum("PartOfSpeech.Person")
    Proper = _int_enum("PartOfSpeech.Proper")
    Reciprocity = _int_enum("PartOfSpeech.Reciprocity")
    Tense = _int_enum("PartOfSpeech.Tense")
    Voice = _int_enum("PartOfSpeech.Voice")


class DependencyEdge:
    Label = _int_enum("DependencyEdge.Label")
