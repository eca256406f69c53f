"""User facing diagnostics. Every abort message is also written to the log."""

CONNECTION_FAILED = "Connection to DefectDojo failed"
CONNECTION_ERROR = CONNECTION_FAILED + ": {status} {reason}"
PAYLOAD_INVALID = "DefectDojo rejected the upload: payload invalid"
UNAUTHORIZED = "DefectDojo rejected the request: unauthorized (check the API key)"
PRODUCT_NOT_FOUND = "DefectDojo rejected the upload: product not found"
MALFORMED_RESPONSE = "DefectDojo returned a malformed response: {detail}"

ARTIFACT_UNSPECIFIED = "The path of the scan report artifact was not specified"
ARTIFACT_NON_EXIST = "The scan report artifact {artifact} does not exist"
ARTIFACT_PROCESSING = "Error processing the scan report artifact {artifact}: {detail}"
SCAN_TYPE_UNSPECIFIED = "The scan type was not specified"
INVALID_ARGUMENTS = "Either a product id or a product name and either an engagement id or an engagement name are required"
PRODUCT_ID_MISSING = "The product id is missing: no product matches the given name and auto-creation of products is disabled"
ENGAGEMENT_ID_MISSING = "The engagement id is missing: no engagement matches the given name and it could not be created"
PUBLISHING = "Publishing scan report to DefectDojo at {url}"
UPLOAD_FAILED = "The upload of the scan report to DefectDojo failed"
SUCCESS = "Scan report uploaded to DefectDojo. Results: {url}"
