# remind/demo.py
import random
from .schemas import Patient, RawResult

DEMO_PATIENT = dict(id="DEMO-01", name="Demo patient", age="70",
                    location="Ward A", notes="Auto-generated demo data.")

def demo_result(patient: Patient | None = None, rng: random.Random | None = None) -> RawResult:
    """
    A plausible random session for trying the dashboard. Blank patient
    fields are filled from DEMO_PATIENT; the score is the number of correct rounds.
    """
    rng = rng or random
    fields = dict(DEMO_PATIENT)
    if patient is not None:
        fields.update({k: v for k, v in patient.model_dump().items() if v})

    rounds_played = int(rng.uniform(8, 15))
    rounds_correct = int(rounds_played * rng.uniform(0.6, 1.0))
    return RawResult(
        rounds_played=rounds_played,
        rounds_correct=rounds_correct,
        avg_reaction_ms=rng.uniform(1500, 3500),
        sequence_length=int(rng.uniform(4, 8)),
        score=rounds_correct,
        patient=Patient(**fields),
    )
