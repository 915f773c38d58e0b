"""Configuration models loaded from config/reconciler.yaml."""

from pydantic import BaseModel, Field

from .subscription import ParameterType


class DatabaseConfig(BaseModel):
    """Database connection settings."""

    url: str = Field(default="sqlite:///./reconciler.sqlite", description="SQLAlchemy database URL")
    echo: bool = Field(default=False, description="Log emitted SQL")


class FulfillmentConfig(BaseModel):
    """Marketplace SaaS Fulfillment API settings."""

    base_url: str = Field(
        default="https://marketplaceapi.microsoft.com/api",
        description="Fulfillment API base URL",
    )
    api_version: str = Field(default="2018-08-31", description="api-version query parameter")
    access_token: str = Field(default="", description="Bearer token for the fulfillment API")
    timeout_seconds: float = Field(default=30.0, gt=0)


class PlanAttributeConfig(BaseModel):
    """Parameter every plan declares when it is first added to the catalog."""

    name: str
    type: ParameterType = ParameterType.INPUT


class ProvisioningConfig(BaseModel):
    """Provisioning endpoint and activation behavior."""

    url: str = Field(default="http://localhost:7071/api/provision", description="Provisioning endpoint")
    timeout_seconds: float = Field(default=30.0, gt=0)
    automatic_provisioning: bool = Field(
        default=True,
        description="Run activation immediately when the customer activates",
    )
    message_parameter: str = Field(
        default="Custom SMS Message",
        description="Input parameter sent as messageTemplate",
    )
    credential_parameter: str = Field(
        default="ApiKey",
        description="Output parameter that receives the provisioned credential",
    )
    plan_attributes: list[PlanAttributeConfig] = Field(
        default_factory=lambda: [
            PlanAttributeConfig(name="Custom SMS Message", type=ParameterType.INPUT),
            PlanAttributeConfig(name="ApiKey", type=ParameterType.OUTPUT),
        ],
        description="Attributes attached to every new plan",
    )


class PollerConfig(BaseModel):
    """Operation polling settings."""

    interval_seconds: float = Field(default=5.0, ge=0)
    max_iterations: int = Field(default=100, ge=1)


class NotificationConfig(BaseModel):
    """Pub/Sub notification settings."""

    enabled: bool = Field(default=False, description="Publish subscription status notifications")
    project_id: str = Field(default="marketplace-reconciler")
    topic: str = Field(default="subscription-status")
    publish_timeout_seconds: float = Field(default=5.0, gt=0)


class ReconcilerSettings(BaseModel):
    """Complete reconciler.yaml configuration."""

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    fulfillment: FulfillmentConfig = Field(default_factory=FulfillmentConfig)
    provisioning: ProvisioningConfig = Field(default_factory=ProvisioningConfig)
    poller: PollerConfig = Field(default_factory=PollerConfig)
    notifications: NotificationConfig = Field(default_factory=NotificationConfig)
