from .tracking_events import (
    aggregate_heatmap_points,
    create_tracking_event,
    list_funnel_step_rows,
)
from .tracking_sessions import (
    get_tracking_session,
    touch_tracking_session,
    upsert_tracking_session,
)
from .funnels import create_funnel, get_funnel, list_funnel_steps, list_funnels
