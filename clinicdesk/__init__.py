"""ClinicDesk: record store, billing workflow, reports and activity log for a clinic front desk."""
