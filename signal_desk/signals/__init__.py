"""
Technical-signal layer: confluence classification, ATR risk levels, alerts.

Modules
-------
confluence  : calculate_confluence() — pure, total scorer.
risk_levels : stop_multiplier() + compute_risk_levels() — pure.
alerts      : score_assets(), build_signal_alerts(), build_stop_loss_alerts(),
              synthesize_alerts() — proactive and reactive alert lists.
"""
