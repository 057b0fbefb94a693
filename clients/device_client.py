"""Stand-in for the bedside device: plays rounds and posts each score to /score."""
import argparse
import random
import time
import httpx

API = "http://localhost:8000"

def play_session(rng: random.Random, rounds: int = 10) -> dict:
    correct = sum(1 for _ in range(rounds) if rng.random() < 0.8)
    return {
        "score": correct,
        "roundsPlayed": rounds,
        "roundsCorrect": correct,
        "avgReactionMs": round(rng.uniform(1400, 3200)),
    }

def main():
    ap = argparse.ArgumentParser()
    ap.add_argument("--api", default=API)
    ap.add_argument("--patient-id", default="DEV-01")
    ap.add_argument("--sessions", type=int, default=5)
    ap.add_argument("--interval", type=float, default=3.0)
    ap.add_argument("--seed", type=int, default=None)
    args = ap.parse_args()

    rng = random.Random(args.seed)
    with httpx.Client(base_url=args.api, timeout=10.0) as client:
        for i in range(args.sessions):
            payload = play_session(rng)
            payload["patientId"] = args.patient_id
            try:
                r = client.post("/score", json=payload)
                r.raise_for_status()
                body = r.json()
                print(f"[{i+1}/{args.sessions}] score={payload['score']} "
                      f"deviation={body['deviationScore']:.1f} risk={body['riskLevel']} id={body['storedId']}")
            except httpx.HTTPError as e:
                print("send failed:", e)
            time.sleep(args.interval)

if __name__ == "__main__":
    main()
