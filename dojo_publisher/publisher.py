from __future__ import annotations

import logging
import os
from dataclasses import replace
from string import Template
from typing import Callable, Mapping, NoReturn, Optional

from . import messages
from .client import DefectDojoClient, ScanUpload
from .config import EffectiveSettings, GlobalSettings, StepSettings, effective_settings
from .errors import AbortError, ApiClientError

logger = logging.getLogger(__name__)

ClientFactory = Callable[[EffectiveSettings], DefectDojoClient]

_EXPANDED_FIELDS = ("artifact", "scan_type", "product_name", "engagement_name",
                    "source_code_url", "commit_hash", "branch_tag")


def client_from_settings(settings: EffectiveSettings) -> DefectDojoClient:
    return DefectDojoClient(settings.url, settings.api_key,
                            connect_timeout=settings.connection_timeout,
                            read_timeout=settings.read_timeout,
                            verify_ssl=settings.verify_ssl)


def expand(value: Optional[str], env: Mapping[str, str]) -> Optional[str]:
    """Substitute ``$VAR``/``${VAR}`` from the build environment; unknown names stay as written."""
    if value is None:
        return None
    return Template(value).safe_substitute(env)


def _blank(value: Optional[str]) -> bool:
    return value is None or not value.strip()


def _abort(message: str) -> NoReturn:
    logger.error(message)
    raise AbortError(message)


def _with_detail(message: str, detail: Optional[str]) -> str:
    return f"{message}: {detail}" if detail else message


class DefectDojoPublisher:
    """One pipeline step: resolve product and engagement, then upload the report.

    Every failure ends in ``AbortError``; nothing is retried or skipped at this
    level. A fresh client is built per ``perform`` call and closed afterwards.
    """

    def __init__(self, step: StepSettings, global_settings: Optional[GlobalSettings] = None,
                 client_factory: ClientFactory = client_from_settings) -> None:
        self.step = step
        self.global_settings = global_settings or GlobalSettings()
        self.client_factory = client_factory

    def perform(self, workspace: str = ".", env: Optional[Mapping[str, str]] = None) -> str:
        """Run the step. Returns the URL where the uploaded results can be viewed."""
        env = os.environ if env is None else env
        step = replace(self.step, **{name: expand(getattr(self.step, name), env) for name in _EXPANDED_FIELDS})

        if _blank(step.artifact):
            _abort(messages.ARTIFACT_UNSPECIFIED)
        if _blank(step.scan_type):
            _abort(messages.SCAN_TYPE_UNSPECIFIED)
        if _blank(step.product_id) and _blank(step.product_name):
            _abort(messages.INVALID_ARGUMENTS)
        if _blank(step.engagement_id) and _blank(step.engagement_name):
            _abort(messages.INVALID_ARGUMENTS)

        artifact_path = os.path.join(workspace, step.artifact)
        if not os.path.isfile(artifact_path):
            _abort(messages.ARTIFACT_NON_EXIST.format(artifact=step.artifact))

        try:
            settings = effective_settings(step, self.global_settings)
        except ValueError as e:
            _abort(str(e))

        logger.info(messages.PUBLISHING.format(url=settings.url))
        client = self.client_factory(settings)
        try:
            engagement_id = self._publish(client, step, settings, artifact_path)
        except ApiClientError as e:
            logger.error(str(e))
            raise AbortError(str(e)) from e
        finally:
            client.close()

        result_url = f"{settings.url}/engagements/{engagement_id}"
        logger.info(messages.SUCCESS.format(url=result_url))
        return result_url

    def _publish(self, client: DefectDojoClient, step: StepSettings,
                 settings: EffectiveSettings, artifact_path: str) -> str:
        product_id = step.product_id
        if not settings.auto_create_products and not _blank(step.product_name) and _blank(product_id):
            product_id = client.get_product_id(step.product_name)
            logger.info("Resolved product '%s' to id %s", step.product_name, product_id)
        if _blank(product_id):
            _abort(messages.PRODUCT_ID_MISSING)

        engagement_id = step.engagement_id
        create = settings.auto_create_engagements and not _blank(step.engagement_name)
        if not settings.auto_create_engagements and not _blank(step.engagement_name) and _blank(engagement_id):
            engagement_id = client.get_engagement_id(product_id, step.engagement_name)
            logger.info("Resolved engagement '%s' to id %s", step.engagement_name, engagement_id)
        if _blank(engagement_id) and not create:
            _abort(messages.ENGAGEMENT_ID_MISSING)

        if create:
            engagement_id = client.create_engagement(step.engagement_name, product_id, step.source_code_url)
            if _blank(engagement_id):
                _abort(_with_detail(messages.ENGAGEMENT_ID_MISSING, client.last_error))
            logger.info("Created engagement '%s' with id %s", step.engagement_name, engagement_id)

        ok = client.upload(ScanUpload(
            product_id=product_id,
            engagement_id=engagement_id,
            scan_type=step.scan_type,
            artifact_path=artifact_path,
            source_code_uri=step.source_code_url,
            branch_tag=step.branch_tag,
            commit_hash=step.commit_hash,
            reupload=settings.reupload_scan,
        ))
        if not ok:
            _abort(_with_detail(messages.UPLOAD_FAILED, client.last_error))
        return engagement_id
