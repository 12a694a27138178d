import logging
from collections import Counter
from typing import Dict, Sequence

from schema import AppResult, PollOutcome

logger = logging.getLogger(__name__)

# Sample sheet template bundled with every app result; never worth downloading
DEFAULT_TEMPLATE = "SMP2_CRUK_V2_03.15.xlsx"

# Extensions requested from the file listing (server side filter is advisory)
RESULT_EXTENSIONS = (".xlsx", ".bai", ".bam")


def negative_control_bam(negative_control: str) -> str:
    """Name of the alignment file produced for the negative control sample."""
    return f"{negative_control}.bam"


def should_download(file_name: str, template_name: str, negative_control: str) -> bool:
    """
    Check whether an app result file should be downloaded.

    The comparison is a literal, case-sensitive match against the template
    spreadsheet and the negative control BAM. Everything else returned by
    the file listing is wanted.

    Args:
        file_name: Name of the file as reported by BaseSpace
        template_name: Name of the template spreadsheet to skip
        negative_control: Sample name of the negative control

    Returns:
        True if the file should be downloaded
    """
    if file_name == template_name:
        return False
    if file_name == negative_control_bam(negative_control):
        return False
    return True


def check_app_results_complete(
    app_results: Sequence[AppResult],
    expected_count: int,
    elapsed: float,
    timeout: float,
) -> PollOutcome:
    """
    Decide whether a batch of app results is done, still pending or timed out.

    The batch is done only when it holds exactly ``expected_count`` app
    results and every one of them is Complete. A timeout wins over
    completion when both hold on the same tick.

    Args:
        app_results: App results returned for the project on this tick
        expected_count: Number of app results (sample pairs) expected
        elapsed: Seconds since polling started
        timeout: Polling budget in seconds

    Returns:
        PollOutcome; for a done batch it carries the ids in batch order
    """
    logger.info("Checking status of app results")

    if elapsed >= timeout:
        return PollOutcome.timed_out()

    num_complete = sum(1 for app_result in app_results if app_result.is_complete)
    logger.debug(
        f"{num_complete}/{len(app_results)} app results complete "
        f"(expecting {expected_count})"
    )

    if len(app_results) == expected_count and num_complete == expected_count:
        logger.info("All appSessions complete")
        return PollOutcome.done([app_result.id for app_result in app_results])

    return PollOutcome.pending()


def summarize_statuses(app_results: Sequence[AppResult]) -> Dict[str, int]:
    """Count app results per status, e.g. ``{"Complete": 3, "Running": 1}``."""
    counts = Counter(app_result.status.value for app_result in app_results)
    return dict(sorted(counts.items()))
