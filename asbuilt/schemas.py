from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def generate_id() -> str:
    return str(uuid.uuid4())


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


ROLES: Dict[str, str] = {
    "tnz": "Представитель застройщика (технического заказчика) по вопросам строительного контроля",
    "g": "Представитель лица, осуществляющего строительство",
    "tng": "Представитель лица, осуществляющего строительство, по вопросам строительного контроля",
    "pr": "Представитель лица, осуществившего подготовку проектной документации",
    "pd": "Представитель лица, выполнившего работы, подлежащие освидетельствованию",
    "i1": "Представитель иной организации (1)",
    "i2": "Представитель иной организации (2)",
    "i3": "Представитель иной организации (3)",
}

ORG_ROLE_FIELDS = ("builderOrgId", "contractorOrgId", "designerOrgId", "workPerformerOrgId")


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return value


def _clean_representatives(value: Any) -> Any:
    if value is None:
        return {}
    if isinstance(value, dict):
        return {
            str(role): str(person_id)
            for role, person_id in value.items()
            if isinstance(person_id, str) and person_id.strip()
        }
    return value


class Record(BaseModel):
    """Base for every stored record: immutable once published to the store."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    id: str = Field(default_factory=generate_id, min_length=1)


class ScopedRecord(Record):
    constructionObjectId: Optional[str] = None

    @field_validator("constructionObjectId", mode="before")
    def _normalize_object_id(cls, value: Any) -> Any:  # noqa: D417
        return _blank_to_none(value)


class ConstructionObject(Record):
    name: str = Field(min_length=1)
    shortName: Optional[str] = None
    description: Optional[str] = None

    @field_validator("name", mode="before")
    def _strip_name(cls, value: Any) -> Any:  # noqa: D417
        if isinstance(value, str):
            return value.strip()
        return value

    @field_validator("shortName", "description", mode="before")
    def _normalize_optional(cls, value: Any) -> Any:  # noqa: D417
        return _blank_to_none(value)

    @property
    def display_name(self) -> str:
        return self.shortName or self.name


class Person(ScopedRecord):
    name: str = ""
    position: str = ""
    organization: str = ""
    authDoc: Optional[str] = None

    @field_validator("name", "position", "organization", mode="before")
    def _strip_strings(cls, value: Any) -> Any:  # noqa: D417
        if value is None:
            return ""
        if isinstance(value, str):
            return value.strip()
        return value


class Organization(ScopedRecord):
    name: str = ""
    ogrn: str = ""
    inn: str = ""
    kpp: Optional[str] = None
    address: str = ""
    phone: Optional[str] = None
    sro: Optional[str] = None

    @field_validator("name", "ogrn", "inn", "address", mode="before")
    def _strip_strings(cls, value: Any) -> Any:  # noqa: D417
        if value is None:
            return ""
        if isinstance(value, (int, float)):
            return str(value)
        if isinstance(value, str):
            return value.strip()
        return value

    @field_validator("kpp", "phone", "sro", mode="before")
    def _normalize_optional(cls, value: Any) -> Any:  # noqa: D417
        if isinstance(value, (int, float)):
            return str(value)
        return _blank_to_none(value)


class CommissionGroup(ScopedRecord):
    name: str = ""
    representatives: Dict[str, str] = Field(default_factory=dict)
    builderOrgId: Optional[str] = None
    contractorOrgId: Optional[str] = None
    designerOrgId: Optional[str] = None
    workPerformerOrgId: Optional[str] = None

    @field_validator("representatives", mode="before")
    def _clean_representatives(cls, value: Any) -> Any:  # noqa: D417
        return _clean_representatives(value)

    @field_validator(*ORG_ROLE_FIELDS, mode="before")
    def _normalize_org_ids(cls, value: Any) -> Any:  # noqa: D417
        return _blank_to_none(value)


class Act(ScopedRecord):
    number: str = ""
    date: str = ""
    objectName: str = ""

    builderDetails: str = ""
    contractorDetails: str = ""
    designerDetails: str = ""
    workPerformer: str = ""

    builderOrgId: Optional[str] = None
    contractorOrgId: Optional[str] = None
    designerOrgId: Optional[str] = None
    workPerformerOrgId: Optional[str] = None

    workName: str = ""
    projectDocs: str = ""
    materials: str = ""
    certs: str = ""

    workStartDate: str = ""
    workEndDate: str = ""
    regulations: str = ""
    nextWork: str = ""

    additionalInfo: str = ""
    copiesCount: str = ""
    attachments: str = ""

    representatives: Dict[str, str] = Field(default_factory=dict)
    commissionGroupId: Optional[str] = None
    nextWorkActId: Optional[str] = None

    @field_validator("representatives", mode="before")
    def _clean_representatives(cls, value: Any) -> Any:  # noqa: D417
        return _clean_representatives(value)

    @field_validator(*ORG_ROLE_FIELDS, "commissionGroupId", "nextWorkActId", mode="before")
    def _normalize_links(cls, value: Any) -> Any:  # noqa: D417
        return _blank_to_none(value)

    @field_validator("copiesCount", "number", mode="before")
    def _stringify(cls, value: Any) -> Any:  # noqa: D417
        if value is None:
            return ""
        if isinstance(value, (int, float)):
            return str(value)
        return value


class CertificateFile(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=generate_id)
    type: Literal["pdf", "image"] = "pdf"
    name: str = ""
    data: str = ""


class Certificate(ScopedRecord):
    number: str = ""
    validUntil: str = ""
    amount: Optional[str] = None
    materials: List[str] = Field(default_factory=list)
    files: List[CertificateFile] = Field(default_factory=list)

    # single-file layout written by older releases, folded into ``files`` on load
    fileType: Optional[Literal["pdf", "image"]] = None
    fileName: Optional[str] = None
    fileData: Optional[str] = None

    @field_validator("materials", mode="before")
    def _clean_materials(cls, value: Any) -> Any:  # noqa: D417
        if value is None:
            return []
        if isinstance(value, list):
            return [item.strip() for item in value if isinstance(item, str) and item.strip()]
        return value


class Regulation(ScopedRecord):
    designation: str = ""
    fullName: str = ""
    status: str = ""
    title: str = ""
    replacement: Optional[str] = None
    registrationDate: Optional[str] = None
    approvalDate: Optional[str] = None
    activeDate: Optional[str] = None
    orgApprover: Optional[str] = None
    fullJson: Optional[Any] = None


class DeletedActEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    act: Act
    deletedOn: str = Field(default_factory=utc_now_iso)
    associatedGroup: Optional[CommissionGroup] = None

    @property
    def id(self) -> str:
        return self.act.id


class DeletedCertificateEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    certificate: Certificate
    deletedOn: str = Field(default_factory=utc_now_iso)

    @property
    def id(self) -> str:
        return self.certificate.id


DEFAULT_PROMPT_NUMBER = (
    "Тип документа (обязательно укажи 'Паспорт качества', 'Сертификат соответствия' или другой тип) "
    "+ Номер документа. Пример: 'Паспорт качества № 123'"
)
DEFAULT_PROMPT_DATE = "Дата выдачи/составления документа (НЕ дата окончания)."
DEFAULT_PROMPT_MATERIALS = "Точное наименование продукции, марки, типы и размеры (например, 'Бетон B25 W6')."


class ProjectSettings(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    defaultCopiesCount: int = 2
    showAdditionalInfo: bool = True
    showAttachments: bool = True
    showCopiesCount: bool = True
    showActDate: bool = False
    showParticipantDetails: bool = True
    geminiApiKey: str = ""
    aiModel: str = "gemini-2.5-flash"
    customAiModel: Optional[str] = None
    openAiApiKey: str = ""
    openAiBaseUrl: str = "https://openrouter.ai/api/v1"
    defaultAttachments: Optional[str] = None
    defaultAdditionalInfo: Optional[str] = None
    defaultActDate: str = "{workEndDate}"
    historyDepth: int = Field(default=20, ge=1)
    registryThreshold: int = 5
    certificatePromptNumber: str = DEFAULT_PROMPT_NUMBER
    certificatePromptDate: str = DEFAULT_PROMPT_DATE
    certificatePromptMaterials: str = DEFAULT_PROMPT_MATERIALS

    @field_validator("historyDepth", mode="before")
    def _coerce_depth(cls, value: Any) -> Any:  # noqa: D417
        if value in (None, ""):
            return 20
        try:
            numeric = int(value)
        except (TypeError, ValueError) as exc:
            raise ValueError("historyDepth must be a number") from exc
        return max(numeric, 1)


class ImportMode(str, Enum):
    REPLACE = "replace"
    MERGE = "merge"


class ImportCategory(BaseModel):
    enabled: bool = Field(default=True, alias="import")
    mode: ImportMode = ImportMode.MERGE
    selectedIds: Optional[List[str]] = None

    model_config = ConfigDict(populate_by_name=True)


class ImportSettings(BaseModel):
    template: bool = False
    registryTemplate: bool = False
    projectSettings: bool = False
    constructionObjects: Optional[ImportCategory] = None
    acts: Optional[ImportCategory] = None
    people: Optional[ImportCategory] = None
    organizations: Optional[ImportCategory] = None
    groups: Optional[ImportCategory] = None
    regulations: Optional[ImportCategory] = None
    certificates: Optional[ImportCategory] = None
    deletedActs: Optional[ImportCategory] = None
    deletedCertificates: Optional[ImportCategory] = None


class ExportSettings(BaseModel):
    template: bool = True
    registryTemplate: bool = True
    projectSettings: bool = True
    constructionObjects: bool = True
    acts: bool = True
    people: bool = True
    organizations: bool = True
    groups: bool = True
    regulations: bool = True
    certificates: bool = True
    deletedActs: bool = True
    deletedCertificates: bool = True


class ImportData(BaseModel):
    template: Optional[str] = None
    registryTemplate: Optional[str] = None
    projectSettings: Optional[ProjectSettings] = None
    constructionObjects: Optional[List[ConstructionObject]] = None
    acts: Optional[List[Act]] = None
    people: Optional[List[Person]] = None
    organizations: Optional[List[Organization]] = None
    groups: Optional[List[CommissionGroup]] = None
    regulations: Optional[List[Regulation]] = None
    certificates: Optional[List[Certificate]] = None
    deletedActs: Optional[List[DeletedActEntry]] = None
    deletedCertificates: Optional[List[DeletedCertificateEntry]] = None
    rejected: Dict[str, str] = Field(default_factory=dict)


class ImportSummary(BaseModel):
    imported: Dict[str, int] = Field(default_factory=dict)
    rejected: Dict[str, str] = Field(default_factory=dict)
    template: bool = False
    registryTemplate: bool = False
    projectSettings: bool = False


class CopySummary(BaseModel):
    created: int = 0
    skipped: int = 0
    relatedOrganizations: int = 0
    message: str = ""
