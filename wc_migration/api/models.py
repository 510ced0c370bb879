"""Pydantic models for API requests and responses."""

from typing import Any, Dict, List, Optional, Union
from pydantic import BaseModel, Field

from ..models.migration import BigCommerceCredentials, WooCommerceCredentials, WordPressCredentials


class WooCommerceCredentialsModel(BaseModel):
    url: str
    consumer_key: str
    consumer_secret: str

    def to_credentials(self) -> WooCommerceCredentials:
        return WooCommerceCredentials(self.url, self.consumer_key, self.consumer_secret)


class BigCommerceCredentialsModel(BaseModel):
    store_hash: str
    access_token: str

    def to_credentials(self) -> BigCommerceCredentials:
        return BigCommerceCredentials(self.store_hash, self.access_token)


class WordPressCredentialsModel(BaseModel):
    url: str
    username: Optional[str] = None
    application_password: Optional[str] = None

    def to_credentials(self) -> WordPressCredentials:
        return WordPressCredentials(self.url, self.username, self.application_password)


# Request Models
class MigrateRequest(BaseModel):
    """One entity migration run."""
    wc_credentials: WooCommerceCredentialsModel
    bc_credentials: BigCommerceCredentialsModel
    wp_credentials: Optional[WordPressCredentialsModel] = None
    # Keys migrated by earlier runs (source IDs, or emails/codes)
    migrated_ids: List[Union[int, str]] = Field(default_factory=list)
    category_id_mapping: Dict[int, int] = Field(default_factory=dict)
    product_id_mapping: Dict[int, int] = Field(default_factory=dict)
    customer_id_mapping: Dict[int, int] = Field(default_factory=dict)
    page_id_mapping: Dict[int, int] = Field(default_factory=dict)
    scope: Dict[str, Any] = Field(default_factory=dict)
    # Take resume set and mappings from the store pair's wizard state instead
    use_wizard: bool = False


class WizardKey(BaseModel):
    source_store: str
    target_store: str


class CompletePhaseRequest(WizardKey):
    data: Optional[Dict[str, Any]] = None


class PhaseDataUpdate(WizardKey):
    data: Dict[str, Any]


# Response Models
class PhaseSummary(BaseModel):
    number: int
    name: str
    required: bool
    status: str
    available: bool


class WizardResponse(BaseModel):
    source_store: str
    target_store: str
    current_phase: int
    phases: List[PhaseSummary]
    required_complete: bool
    can_proceed: bool
    can_skip: bool
    last_updated: Optional[str] = None
    state: Dict[str, Any] = Field(default_factory=dict)
