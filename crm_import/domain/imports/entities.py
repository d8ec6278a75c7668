"""
Entity descriptors for the three importable CRM collections.

An EntitySchema is a plain value describing one target collection: its
fields (canonical name, display label, accepted header aliases, validator
kind), which fields are required, how a missing unique id may be derived,
and the lookup keys used to reconcile rows against existing records.
"""
from dataclasses import dataclass
from typing import Dict, FrozenSet, Optional, Tuple

from crm_import.core.errors import ImportPipelineError, NOT_FOUND


@dataclass(frozen=True)
class FieldSpec:
    name: str
    label: str
    aliases: FrozenSet[str] = frozenset()
    kind: str = "text"


@dataclass(frozen=True)
class SurrogateKey:
    """Derives a unique id from other fields when the source has none."""
    sources: Tuple[str, ...]
    prefix: str
    length: int = 8


@dataclass(frozen=True)
class LookupKey:
    """Fields matched together against existing records."""
    fields: Tuple[str, ...]
    # Key is not tried when any of these fields has a value on the row
    unless_present: Tuple[str, ...] = ()


@dataclass(frozen=True)
class EntitySchema:
    entity_type: str
    fields: Tuple[FieldSpec, ...]
    required: Tuple[str, ...]
    unique_field: Optional[str] = None
    surrogate: Optional[SurrogateKey] = None
    lookup_keys: Tuple[LookupKey, ...] = ()

    @property
    def field_names(self) -> Tuple[str, ...]:
        return tuple(spec.name for spec in self.fields)

    @property
    def required_headers(self) -> Tuple[str, ...]:
        """Canonical fields whose column must be present in the header row."""
        if self.unique_field and self.unique_field not in self.required:
            return (self.unique_field,) + self.required
        return self.required

    def get_field(self, name: str) -> Optional[FieldSpec]:
        for spec in self.fields:
            if spec.name == name:
                return spec
        return None

    def alias_table(self) -> Dict[str, str]:
        """
        Build the lowercase alias -> canonical field lookup.

        The canonical name and display label are always accepted. When two
        fields claim the same alias, the field declared first wins.
        """
        from .headers import normalize_header

        table: Dict[str, str] = {}
        for spec in self.fields:
            for alias in (spec.name, spec.label, *sorted(spec.aliases)):
                table.setdefault(normalize_header(alias), spec.name)
        return table


CONTACTS = EntitySchema(
    entity_type="contacts",
    fields=(
        FieldSpec("contact_unique_id", "Contact Unique ID",
                  frozenset({"unique id", "contact_id", "contact id", "contact unique id"})),
        FieldSpec("full_name", "Contact Full Name",
                  frozenset({"full name", "name", "full_name"})),
        FieldSpec("first_name", "Contact First Name",
                  frozenset({"first name", "first_name", "firstname"})),
        FieldSpec("last_name", "Contact Last Name",
                  frozenset({"last name", "last_name", "lastname"})),
        FieldSpec("job_category", "Contact Job Category",
                  frozenset({"job category", "job_category", "category"})),
        FieldSpec("email", "Contact Email",
                  frozenset({"email", "e-mail", "email address", "email_address"}), kind="email"),
        FieldSpec("phone_number", "Contact Phone Number",
                  frozenset({"phone", "phone number", "telephone", "phone_number"}), kind="phone"),
        FieldSpec("linkedin_url", "Contact Linkedin URL",
                  frozenset({"linkedin", "linkedin url", "linkedin profile", "linkedin_url"}), kind="url"),
        FieldSpec("license_number", "License Number",
                  frozenset({"license number", "license #", "license", "license_number"})),
        FieldSpec("contact_last_updated", "Contact Last Updated Date",
                  frozenset({"last updated", "updated date", "updated_date", "last_updated"}), kind="date"),
    ),
    required=("first_name", "last_name"),
    unique_field="contact_unique_id",
    surrogate=SurrogateKey(sources=("first_name", "last_name", "license_number"), prefix="CNT-"),
    lookup_keys=(
        LookupKey(("contact_unique_id",)),
        LookupKey(("first_name", "last_name", "license_number")),
    ),
)

COMPANIES = EntitySchema(
    entity_type="companies",
    fields=(
        FieldSpec("name", "Company Name",
                  frozenset({"company name", "company", "name"})),
        FieldSpec("dba", "Company DBA",
                  frozenset({"dba", "doing business as"})),
        FieldSpec("website_url", "Company Website URL",
                  frozenset({"website", "website url", "company website", "website_url"}), kind="url"),
        FieldSpec("linkedin_url", "Company Linkedin URL",
                  frozenset({"linkedin", "linkedin url", "linkedin_url"}), kind="url"),
        FieldSpec("open_for_business", "Open for Business?",
                  frozenset({"open for business", "open", "open_for_business"}), kind="boolean"),
        FieldSpec("license_number", "License Number",
                  frozenset({"license number", "license #", "license", "license_number"})),
        FieldSpec("company_last_updated", "Company Last Updated Date",
                  frozenset({"last updated", "updated date", "last_updated"}), kind="date"),
    ),
    required=("name",),
    lookup_keys=(
        LookupKey(("name", "license_number")),
        # A licensed row never matches another license of the same company by name
        LookupKey(("name",), unless_present=("license_number",)),
    ),
)

LICENSES = EntitySchema(
    entity_type="licenses",
    fields=(
        FieldSpec("license_number", "License Number",
                  frozenset({"license number", "license #", "license", "license_number"})),
        FieldSpec("license_type", "License Type",
                  frozenset({"type", "license type", "license_type"})),
        FieldSpec("license_market", "License Market",
                  frozenset({"market", "license market", "license_market"})),
        FieldSpec("license_category", "License Category",
                  frozenset({"category", "license category", "license_category"})),
        FieldSpec("full_address", "License Full Address",
                  frozenset({"full address", "address", "full_address"})),
        FieldSpec("state", "License State",
                  frozenset({"state", "license state"}), kind="state"),
        FieldSpec("country", "License Country",
                  frozenset({"country", "license country"})),
        FieldSpec("issue_date", "License Issue Date",
                  frozenset({"issue date", "issued", "issue_date"}), kind="date"),
        FieldSpec("expiration_date", "License Expiration Date",
                  frozenset({"expiration date", "expires", "expiration", "expiration_date"}), kind="date"),
        FieldSpec("issued_by", "License Issued By",
                  frozenset({"issued by", "issuer", "issued_by"})),
        FieldSpec("issued_by_website", "License Issued By Website",
                  frozenset({"issued by website", "issuer website", "issued_by_website"}), kind="url"),
        FieldSpec("last_updated", "License Last Updated Date",
                  frozenset({"last updated", "updated date", "last_updated"}), kind="date"),
    ),
    required=("license_number",),
    lookup_keys=(LookupKey(("license_number",)),),
)

ENTITY_SCHEMAS: Dict[str, EntitySchema] = {
    schema.entity_type: schema for schema in (CONTACTS, COMPANIES, LICENSES)
}


def get_entity_schema(entity_type: str) -> EntitySchema:
    """Return the schema for an entity type or raise NOT_FOUND."""
    schema = ENTITY_SCHEMAS.get((entity_type or "").strip().lower())
    if schema is None:
        raise ImportPipelineError(
            NOT_FOUND,
            f"Unknown import target: {entity_type}. Expected one of {sorted(ENTITY_SCHEMAS)}",
            404,
        )
    return schema
