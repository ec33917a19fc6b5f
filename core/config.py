from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from pathlib import Path
from typing import Any, Dict, Optional

# Resolve the project root .env file (core/../.env)
_THIS_DIR = Path(__file__).resolve().parent          # core/
_PROJECT_ROOT = _THIS_DIR.parent
_ENV_FILE = _PROJECT_ROOT / ".env"

class Settings(BaseSettings):
    # Server config
    SERVER_HOST: str = "0.0.0.0"
    SERVER_PORT: int = 8000
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # Frontend config
    FRONTEND_URL: str = "http://localhost:5173"

    # Supabase
    SUPABASE_URL: str = ""
    SUPABASE_KEY: str = ""

    # Transaction persistence backend: "supabase" or "memory"
    TRANSACTION_STORE: str = "supabase"

    # Locale used when the caller does not send one
    DEFAULT_LOCALE: str = "fi"

    # Timeout (seconds) for every outbound gateway request
    HTTP_TIMEOUT: float = 30.0

    # Query parameter carrying the transaction id through gateway redirects
    PAYMENT_ID_PARAM: str = "finna_payment_id"

    # Online payment configuration per source (JSON), e.g.
    # {"library1": {"handler": "CPU", "merchantId": "...", "secret": "...", "url": "..."}}
    ONLINE_PAYMENT_SOURCES: Dict[str, Dict[str, Any]] = {}

    model_config = SettingsConfigDict(
        env_file=str(_ENV_FILE),
        env_file_encoding="utf-8",
        extra="ignore"
    )

settings = Settings()


class GatewayConfig(BaseModel):
    """Online payment configuration of one source, keys as in ONLINE_PAYMENT_SOURCES"""
    handler: str = ""
    merchant_id: Optional[str] = Field(None, alias="merchantId")
    secret: Optional[str] = None
    url: Optional[str] = None
    e2url: Optional[str] = None
    product_code: Optional[str] = Field(None, alias="productCode")
    transaction_fee_product_code: Optional[str] = Field(None, alias="transactionFeeProductCode")
    product_code_mappings: str = Field("", alias="productCodeMappings")
    organization_product_code_mappings: str = Field("", alias="organizationProductCodeMappings")
    organization_merchant_id_mappings: str = Field("", alias="organizationMerchantIdMappings")
    organization_fine_type_product_code_mappings: str = Field(
        "", alias="organizationFineTypeProductCodeMappings"
    )
    payment_description: str = Field("", alias="paymentDescription")
    supported_languages: str = Field("", alias="supportedLanguages")
    platform_name: Optional[str] = Field(None, alias="platformName")
    o_id: Optional[str] = Field(None, alias="oId")
    application_name: Optional[str] = Field(None, alias="applicationName")
    sap_code: Optional[str] = Field(None, alias="sapCode")
    sap_office_code: Optional[str] = Field(None, alias="sapOfficeCode")
    sap_sales_organization: Optional[str] = Field(None, alias="sapSalesOrganization")
    sap_distribution_channel: Optional[str] = Field(None, alias="sapDistributionChannel")
    sap_sector: Optional[str] = Field(None, alias="sapSector")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @field_validator("merchant_id", "secret", "product_code", "transaction_fee_product_code",
                     "o_id", "sap_code", mode="before")
    @classmethod
    def stringify(cls, v):
        # Merchant ids and codes are often written as numbers in JSON
        return str(v) if isinstance(v, (int, float)) else v

    @staticmethod
    def key_name(field: str) -> str:
        """Configuration key (alias) of a field, used in error messages"""
        info = GatewayConfig.model_fields[field]
        return info.alias or field


def parse_mappings(value: Optional[str]) -> Dict[str, str]:
    """Parse 'key=value:key2=value2' mappings; items without '=' are skipped"""
    mappings: Dict[str, str] = {}
    if not value:
        return mappings
    for item in value.split(":"):
        parts = item.split("=", 1)
        if len(parts) != 2:
            continue
        mappings[parts[0].strip()] = parts[1].strip()
    return mappings
