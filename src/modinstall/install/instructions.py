"""Declarative install actions returned by installers.

Each instruction kind is a separate frozen model, ``Instruction`` is the closed
union of them, discriminated by the ``type`` field. Installers may return either
models or plain dicts (e.g. loaded from yaml), ``parse_instructions`` turns the
latter into models.
"""
from dataclasses import dataclass, field
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class BaseInstruction(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class CopyInstruction(BaseInstruction):
    type: Literal["copy"] = "copy"
    source: str
    destination: str


class MkDirInstruction(BaseInstruction):
    type: Literal["mkdir"] = "mkdir"
    destination: str


class GenerateFileInstruction(BaseInstruction):
    type: Literal["generatefile"] = "generatefile"
    destination: str
    content: str


class IniEditInstruction(BaseInstruction):
    type: Literal["iniedit"] = "iniedit"
    destination: str
    section: str
    key: str
    value: str

    def render(self) -> str:
        return f"{self.key} = {self.value}"


class SubmoduleInstruction(BaseInstruction):
    type: Literal["submodule"] = "submodule"
    path: str
    key: str
    submodule_type: str | None = None


class AttributeInstruction(BaseInstruction):
    type: Literal["attribute"] = "attribute"
    key: str
    value: Any = None


class SetModTypeInstruction(BaseInstruction):
    type: Literal["setmodtype"] = "setmodtype"
    value: str


class UnsupportedInstruction(BaseInstruction):
    type: Literal["unsupported"] = "unsupported"
    function: str


class ErrorInstruction(BaseInstruction):
    type: Literal["error"] = "error"
    message: str


Instruction = Annotated[
    CopyInstruction
    | MkDirInstruction
    | GenerateFileInstruction
    | IniEditInstruction
    | SubmoduleInstruction
    | AttributeInstruction
    | SetModTypeInstruction
    | UnsupportedInstruction
    | ErrorInstruction,
    Field(discriminator="type")]

_instruction_list_adapter = TypeAdapter(list[Instruction])


def parse_instructions(raw: list[dict[str, Any] | BaseInstruction]) -> list[Instruction]:
    """Validate list of instructions given as dicts or models.

    Raises pydantic ValidationError on unknown instruction types or missing fields.
    """
    return _instruction_list_adapter.validate_python(
        [entry.model_dump() if isinstance(entry, BaseInstruction) else entry for entry in raw])


@dataclass(frozen=True)
class InstallOutcome:
    """Result of running an installer.

    ``instructions`` set to None means the installer has already shown the
    failure to the user and the manager shouldn't report it again.
    """
    instructions: list[Instruction] | None = field(default_factory=list)

    @classmethod
    def reported_failure(cls) -> "InstallOutcome":
        return cls(instructions=None)


@dataclass
class InstructionGroups:
    """Instructions bucketed by kind, input order is kept inside each bucket."""
    mkdir: list[MkDirInstruction] = field(default_factory=list)
    copy: list[CopyInstruction] = field(default_factory=list)
    generatefile: list[GenerateFileInstruction] = field(default_factory=list)
    iniedit: list[IniEditInstruction] = field(default_factory=list)
    submodule: list[SubmoduleInstruction] = field(default_factory=list)
    attribute: list[AttributeInstruction] = field(default_factory=list)
    setmodtype: list[SetModTypeInstruction] = field(default_factory=list)
    unsupported: list[UnsupportedInstruction] = field(default_factory=list)
    error: list[ErrorInstruction] = field(default_factory=list)


def group_instructions(instructions: list[Instruction]) -> InstructionGroups:
    groups = InstructionGroups()
    for instruction in instructions:
        match instruction:
            case MkDirInstruction():
                groups.mkdir.append(instruction)
            case CopyInstruction():
                groups.copy.append(instruction)
            case GenerateFileInstruction():
                groups.generatefile.append(instruction)
            case IniEditInstruction():
                groups.iniedit.append(instruction)
            case SubmoduleInstruction():
                groups.submodule.append(instruction)
            case AttributeInstruction():
                groups.attribute.append(instruction)
            case SetModTypeInstruction():
                groups.setmodtype.append(instruction)
            case UnsupportedInstruction():
                groups.unsupported.append(instruction)
            case ErrorInstruction():
                groups.error.append(instruction)
            case _:
                raise TypeError(f"Unknown instruction: {instruction!r}")
    return groups
