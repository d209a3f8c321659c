"""
WordPress example scenarios.

Three workloads against a WordPress site with a WPForms form:
- samplePage: GET the sample page at a constant arrival rate
- simpleForm: load the form page, then submit it with a dataset row
- ui (opt-in): load the sample page in a browser and look for its text
"""

import logging
from typing import List, Mapping

from pydantic import ValidationError

from loadbench.config import Settings
from loadbench.connectors.http_client import FormField
from loadbench.core.dataset import OPTIONAL_DEFAULTS
from loadbench.core.executor.iteration import IterationContext
from loadbench.core.thresholds import DEFAULT_THRESHOLDS, parse_thresholds
from loadbench.errors import ConfigurationError
from loadbench.models import ExecutorType, RunPlan, ScenarioConfig

logger = logging.getLogger(__name__)

SAMPLE_PAGE = "/sample-page/"
SIMPLE_FORM = "/simple-form/"
ADMIN_AJAX = "/wp-admin/admin-ajax.php"

FORM_BOUNDARY = "----WebKitFormBoundaryBzBiOLOAABeG7PBl"

SUBMIT_HEADERS: Mapping[str, str] = {
    "X-Requested-With": "XMLHttpRequest",
    "Accept": "application/json, text/javascript, */*; q=0.01",
}


def build_form_fields(row: Mapping[str, str], base_url: str) -> List[FormField]:
    """WPForms submission fields for one dataset row, in submission order."""
    message = row.get("Message") or OPTIONAL_DEFAULTS["Message"]
    return [
        FormField("wpforms[fields][1][first]", row.get("Name", "")),
        FormField("wpforms[fields][1][last]", row.get("Surname", "")),
        FormField("wpforms[fields][5]"),
        FormField("wpforms[fields][2]", row.get("Email", "")),
        FormField("wpforms[fields][4]"),
        FormField("wpforms[fields][3]", message),
        FormField("wpforms[id]", "8"),
        FormField("page_title", "simple-form"),
        FormField("page_url", f"{base_url}{SIMPLE_FORM}"),
        FormField("url_referer"),
        FormField("page_id", "10"),
        FormField("wpforms[post_id]", "10"),
        FormField("wpforms[submit]", "wpforms-submit"),
        FormField("wpforms[token]", "054f5adcbb5309f422d55e0bd244c68e"),
        FormField("action", "wpforms_submit"),
        FormField("start_timestamp", "1753010534"),
        FormField("end_timestamp", "1753010592"),
    ]


class WordPressScenarios:
    """Scenario bodies bound to one set of settings."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.base_url = settings.BASE_URL.rstrip("/")
        self.http_timeout = settings.seconds("HTTP_TIMEOUT")
        self.max_redirects = settings.HTTP_MAX_REDIRECTS
        self.think_time = settings.seconds("THINK_TIME")
        self.ui_think_time = settings.seconds("UI_THINK_TIME")

    def _http_options(self, endpoint: str) -> dict:
        return {
            "timeout": self.http_timeout,
            "max_redirects": self.max_redirects,
            "tags": {"endpoint": endpoint},
        }

    async def sample_page(self, ctx: IterationContext) -> None:
        res = await ctx.http.get(
            f"{self.base_url}{SAMPLE_PAGE}", **self._http_options("sample-page")
        )
        ctx.check(
            res,
            {
                "Landing on Sample page has been successful": lambda r: r.status == 200,
                "Content type is correct": lambda r: "text/html" in r.header("Content-Type"),
            },
        )
        await ctx.sleep(self.think_time)

    async def simple_form(self, ctx: IterationContext) -> None:
        row = ctx.row
        ctx.log.debug(
            "Using row %d: Name=%r Surname=%r Email=%r",
            ctx.iteration,
            row.get("Name"),
            row.get("Surname"),
            row.get("Email"),
        )

        with ctx.group("Landing on a simple form"):
            res = await ctx.http.get(
                f"{self.base_url}{SIMPLE_FORM}", **self._http_options("simple-form-get")
            )
            ctx.check(
                res,
                {
                    "Landing on simple form has been successful": lambda r: r.status == 200,
                    "Page contains form elements": lambda r: "wpforms" in r.body,
                },
            )

        with ctx.group("Submitting simple form"):
            res = await ctx.http.post_multipart(
                f"{self.base_url}{ADMIN_AJAX}",
                build_form_fields(row, self.base_url),
                boundary=FORM_BOUNDARY,
                headers={
                    **SUBMIT_HEADERS,
                    "Origin": self.base_url,
                    "Referer": f"{self.base_url}{SIMPLE_FORM}",
                },
                **self._http_options("simple-form-post"),
            )
            ctx.check(
                res,
                {"The form has been submitted successfully": lambda r: r.status == 200},
            )

        await ctx.sleep(self.think_time)

    async def ui(self, ctx: IterationContext) -> None:
        async with ctx.browser_session() as page:
            await page.goto(f"{self.base_url}{SAMPLE_PAGE}", wait_until="load")
            found = await page.count_text("Have fun!", element="p")
            ctx.check(found, {"The Have fun! text has been found": lambda n: n > 0})
        await ctx.sleep(self.ui_think_time)


def build_plan(settings: Settings) -> RunPlan:
    """
    Build the finalized run plan from settings.

    The ui scenario is included only when ``SCENARIO_UI_ENABLED`` is set.

    Raises:
        ConfigurationError: If any scenario parameter is invalid.
    """
    s = settings
    s.check_ranges()
    bodies = WordPressScenarios(s)
    try:
        scenarios = [
            ScenarioConfig(
                name="simpleForm",
                executor=ExecutorType.PER_VU_ITERATIONS,
                exec_fn=bodies.simple_form,
                vus=s.SCENARIO_SIMPLE_FORM_VUS,
                iterations=s.SCENARIO_SIMPLE_FORM_ITERATIONS,
                max_duration=s.SCENARIO_SIMPLE_FORM_MAX_DURATION,
                start_time=s.SCENARIO_SIMPLE_FORM_START_TIME,
                graceful_stop=s.GRACEFUL_STOP,
            ),
            ScenarioConfig(
                name="samplePage",
                executor=ExecutorType.CONSTANT_ARRIVAL_RATE,
                exec_fn=bodies.sample_page,
                rate=s.SCENARIO_SAMPLE_PAGE_RATE,
                duration=s.SCENARIO_SAMPLE_PAGE_DURATION,
                pre_allocated_vus=s.SCENARIO_SAMPLE_PAGE_PREALLOCATED_VUS,
                max_vus=s.SCENARIO_SAMPLE_PAGE_MAX_VUS,
                graceful_stop=s.GRACEFUL_STOP,
            ),
        ]
        if s.SCENARIO_UI_ENABLED:
            scenarios.append(
                ScenarioConfig(
                    name="ui",
                    executor=ExecutorType.SHARED_ITERATIONS,
                    exec_fn=bodies.ui,
                    vus=s.SCENARIO_UI_VUS,
                    iterations=s.SCENARIO_UI_ITERATIONS,
                    graceful_stop=s.GRACEFUL_STOP,
                    browser_type=s.BROWSER_TYPE,
                )
            )
        else:
            logger.info("Browser scenario disabled (SCENARIO_UI_ENABLED=false)")
        return RunPlan(
            scenarios=tuple(scenarios),
            thresholds=tuple(parse_thresholds(DEFAULT_THRESHOLDS)),
        )
    except ValidationError as e:
        raise ConfigurationError(f"Invalid scenario configuration: {e}") from e
