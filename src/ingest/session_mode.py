"""Selects sequential or multi-tab processing for a batch."""

import logging
from enum import Enum

from src.config import settings

logger = logging.getLogger(__name__)


class ProcessingMode(Enum):
    SEQUENTIAL = "sequential"
    TABBED = "tabbed"


async def can_use_multi_tab(session, required_tabs: int) -> bool:
    """
    Probe whether the session can work with several tabs.

    If enough tabs are already open this returns True without touching the
    browser. Otherwise one throwaway tab is opened and closed, and the
    originally active tab is restored. Any failure means "no".

    Args:
        session: Browser session
        required_tabs: Number of tabs the batch would use

    Returns:
        True if multi-tab processing is available
    """
    try:
        if len(await session.list_tabs()) >= required_tabs:
            return True
    except Exception as e:
        logger.warning(f"Could not list browser tabs: {e}")
        return False

    original = None
    probe = None
    try:
        original = await session.active_tab()
        probe = await session.open_tab()
        await session.switch_tab(probe)
        return True
    except Exception as e:
        logger.warning(f"Multi-tab probe failed, falling back to sequential: {e}")
        return False
    finally:
        try:
            if probe is not None:
                await session.close_tab(probe)
            if original is not None:
                await session.switch_tab(original)
        except Exception as e:
            logger.warning(f"Failed to clean up multi-tab probe: {e}")


async def select_mode(session, search_term_count: int) -> ProcessingMode:
    """Pick the processing mode for a batch of search terms."""
    if not settings.multi_tab_enabled or search_term_count < 2:
        return ProcessingMode.SEQUENTIAL

    required = min(search_term_count, settings.max_tabs)
    if await can_use_multi_tab(session, required):
        logger.info(f"Using tabbed processing with {required} tabs")
        return ProcessingMode.TABBED

    logger.info("Using sequential processing")
    return ProcessingMode.SEQUENTIAL
