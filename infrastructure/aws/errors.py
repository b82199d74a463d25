"""Classification of botocore errors."""

from botocore.exceptions import ClientError


NOT_FOUND_CODES = frozenset(
    {
        "InvalidInstanceID.NotFound",
        "InvalidKeyPair.NotFound",
        "InvalidGroup.NotFound",
        "InvalidGroupId.NotFound",
        "InvalidVpcID.NotFound",
        "InvalidSubnetID.NotFound",
        "InvalidInternetGatewayID.NotFound",
        "InvalidRouteTableID.NotFound",
        "InvalidAssociationID.NotFound",
        "Gateway.NotAttached",
        "NoSuchEntity",
        "NoSuchHostedZone",
    }
)

DEPENDENCY_CODES = frozenset({"DependencyViolation", "DeleteConflict", "ResourceInUse"})


def error_code(error: Exception) -> str:
    if isinstance(error, ClientError):
        return error.response.get("Error", {}).get("Code", "")
    return ""


def is_not_found(error: Exception) -> bool:
    """True when the provider says the resource does not exist."""
    return error_code(error) in NOT_FOUND_CODES


def is_dependency_violation(error: Exception) -> bool:
    """True when a delete was refused because something still uses the resource."""
    return error_code(error) in DEPENDENCY_CODES
