"""Engine services: store, guard, validator, detector, sprint engine and the facade."""
