"""Pipeline services: mapping, transforms, validation, import, rollback,
export, job tracking, templates and the DataToolsService facade."""
