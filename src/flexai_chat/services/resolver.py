"""Canned response resolver and the default fragment generator."""

import asyncio
import re
from typing import AsyncIterator, List, Optional, Sequence, Tuple

import structlog

from ..domain.models import AIModel

logger = structlog.get_logger()

DEFAULT_TOPIC = "default"

CANNED_RESPONSES = {
    "workout": """Here's a **Push Day** workout tailored for you:

## Chest & Shoulders
- **Bench Press** — 4 sets × 8 reps @ 75% 1RM
- **Incline Dumbbell Press** — 3 sets × 10 reps
- **Cable Flies** — 3 sets × 12 reps (squeeze at peak!)

## Shoulders
- **Overhead Press** — 4 sets × 8 reps
- **Lateral Raises** — 3 sets × 15 reps (light weight, strict form)
- **Face Pulls** — 3 sets × 15 reps

## Triceps
- **Tricep Pushdowns** — 3 sets × 12 reps
- **Skull Crushers** — 3 sets × 10 reps

**Rest periods:** 90–120s between compound lifts, 60s for isolation.

> 💡 *Pro tip:* Focus on the mind-muscle connection on isolation work — it matters more than weight here.""",

    "nutrition": """Based on your profile, here's your **personalized nutrition blueprint**:

## Daily Targets
| Macro | Amount | Source |
|-------|--------|--------|
| **Protein** | 180g | 2.0g per kg bodyweight |
| **Carbs** | 250g | Focus around workouts |
| **Fats** | 65g | Prioritize unsaturated |

## Meal Timing
1. **Pre-workout (60–90 min before):** Complex carbs + protein
   - Example: Oats with whey protein
2. **Post-workout (within 30 min):** Fast carbs + protein
   - Example: Rice cakes + protein shake
3. **Before bed:** Slow-digesting protein
   - Example: Cottage cheese or casein

## Hydration
- **Minimum:** 3L water/day
- **Training days:** Add 500–750ml per hour of training

```
Water needs = 35ml × bodyweight (kg) + sweat losses
```

Want me to generate a full 7-day meal plan?""",

    "progress": """Here's your **progress analysis** from the last 12 weeks:

## Strength Gains 💪
- **Bench Press:** +12.5kg (↑18%)
- **Squat:** +20kg (↑22%)
- **Deadlift:** +17.5kg (↑16%)

## Volume Metrics 📈
Your weekly training volume has increased by **~28%**, which is within the optimal 10–20% progressive overload range per phase.

## Consistency Score
```
Workouts completed: 34/36 planned (94.4%)
Streak: 23 days 🔥
```

## Key Observations
- **Recovery** is excellent — HRV data shows good adaptation
- **Sleep quality** dipped in week 8 — consider deload next cycle
- **Weakest lift:** Overhead Press needs attention

## Recommendations
1. Prioritize OHP to 2× per week
2. Add 1 deload week after week 12
3. Increase protein to 200g on training days

You're making **exceptional progress** — top 5% for your experience level! 🏆""",

    "goals": """Let's set **SMART fitness goals** that will actually stick:

## Goal-Setting Framework

**S** — *Specific*: "Increase bench press to 100kg" not "get stronger"
**M** — *Measurable*: Track every session with exact numbers
**A** — *Achievable*: 1–2% improvement per week is realistic
**R** — *Relevant*: Aligns with your primary objective (muscle / strength / endurance)
**T** — *Time-bound*: Set a 12-week checkpoint

## Recommended Goal Structure

### Short-term (4 weeks)
- Complete all 4 planned workouts per week
- Hit daily protein target 5+ days per week

### Medium-term (12 weeks)
- Add 10% to main compound lifts
- Reach target bodyweight ±2kg

### Long-term (6 months)
- Qualify for your first powerlifting meet **OR** achieve visible body recomposition

What's your **primary focus** right now — strength, muscle growth, or fat loss? I'll create a personalized roadmap for you.""",

    "recovery": """Here's a comprehensive **recovery protocol** to maximize your gains:

## Sleep Optimization
- **Target:** 7–9 hours per night
- Aim for **consistent sleep/wake times** (within 30 min)
- Keep bedroom **cold (16–19°C)** and dark

## Active Recovery Techniques

| Method | When | Duration |
|--------|------|----------|
| **Foam rolling** | Post-workout | 10–15 min |
| **Light walking** | Rest days | 20–30 min |
| **Cold shower** | Morning | 2–3 min |
| **Epsom salt bath** | After intense sessions | 20 min |

## Nutrition for Recovery
1. **Post-workout window (30 min):** 40g protein + 80g fast carbs
2. **Omega-3s:** 3–5g EPA+DHA daily to reduce inflammation
3. **Magnesium:** 300–400mg before bed for sleep quality

## Signs You're Under-Recovered
- Persistent soreness >72 hours
- Drop in performance 3+ sessions in a row
- Resting HR elevated by >5 bpm
- Mood changes, irritability

> ⚠️ *If you see 3+ signs, take a full deload week.*""",

    "supplements": """Here's a science-backed **supplement guide** for your goals:

## Tier 1 — Strong Evidence
These supplements have *robust clinical data*:

```
Creatine Monohydrate  →  5g/day (any time)
Caffeine              →  3–6mg/kg, 30–60 min pre-workout
Protein powder        →  Fill gaps to hit daily targets
```

## Tier 2 — Good Evidence
- **Beta-Alanine:** 3.2–6.4g/day — reduces muscular fatigue (causes tingling)
- **Citrulline Malate:** 6–8g pre-workout — improves endurance and pump
- **Vitamin D3:** 2,000–5,000 IU/day if deficient (test first)

## Tier 3 — Situational
- **Magnesium Glycinate** — for sleep and recovery
- **Ashwagandha** — cortisol reduction under high stress
- **Collagen Peptides** — joint health with Vitamin C

## What to Skip
- Pre-workouts with proprietary blends
- Fat burners (largely ineffective and potentially harmful)
- BCAAs (redundant if protein intake is adequate)

> 💊 *Always consult a healthcare professional before starting new supplements.*""",

    "cardio": """Here's an **optimal cardio strategy** based on your goals:

## Zone 2 Training (Base Building)
**Heart Rate:** 60–70% max HR (you can hold a conversation)
- **Frequency:** 3–4× per week, 30–45 min sessions
- **Best modalities:** Cycling, incline walking, rowing

## HIIT Protocol
**For fat loss and VO2 max:**

| Phase | Work | Rest | Rounds |
|-------|------|------|--------|
| Warm-up | — | — | 5 min |
| Sprint | 20 sec | 40 sec | 8 rounds |
| Cool-down | — | — | 5 min |

## Cardio + Lifting Integration
1. **Concurrent training order:** Lift first, cardio after
2. **Minimum gap:** 6 hours between sessions if on same day
3. **Recovery:** Low-intensity cardio on rest days is fine

## VO2 Max Benchmarks
```
Elite:     > 60 ml/kg/min
Good:      50–60 ml/kg/min
Average:   40–50 ml/kg/min
Poor:      < 40 ml/kg/min
```

How many days per week can you dedicate to cardio? I'll build a specific plan.""",

    "form": """Here's a **form troubleshooting guide** for the main compound lifts:

## Squat Common Fixes
- **Knees caving inward** → Strengthen glutes (banded squats, clamshells)
- **Forward lean** → Improve ankle mobility + thoracic extension
- **Butt wink** → Reduce depth until flexibility improves

## Bench Press Common Fixes
- **Bar path drifting forward** → Press in a slight arc toward face
- **Flared elbows** → Tuck to 45–75° for shoulder health
- **Leg drive missing** → Drive heels into floor, arch your lower back

## Deadlift Common Fixes
- **Bar drifting from body** → Drag the bar up your shins
- **Rounding lower back** → Brace harder before initiating pull
- **Hyperextending at top** → Lock out by squeezing glutes, not leaning back

## General Principles
1. **Record yourself** — side angle for squats/deadlifts, front for bench
2. **Film at slow motion** (240fps on iPhone) to catch errors
3. **Warm up sets:** Film these, not just working sets

> 🎥 *Use our Form Analysis feature to upload video for real-time AI feedback!*""",

    "mobility": """Here's a **mobility routine** to improve performance and prevent injury:

## Morning Routine (10 min)
Complete this before breakfast for best results:

1. **Cat-Cow** — 10 reps (spinal mobility)
2. **World's Greatest Stretch** — 5/side
3. **Hip 90/90** — 2 min hold/side
4. **Thoracic Rotation** — 10 reps/side
5. **Band Pull-Aparts** — 3 × 20

## Pre-Workout Activation (5 min)
| Exercise | Sets | Notes |
|----------|------|-------|
| Glute Bridge | 2 × 15 | Pause at top |
| Side-lying Clam | 2 × 15 | Slow, controlled |
| Wall Slide | 2 × 10 | Maximize scapular ROM |

## Targeted Flexibility (Post-Workout)

### Hip Flexors (priority for desk workers):
- **Couch stretch** — 2 min/side
- **Pigeon pose** — 90 sec/side

### Shoulders:
- **Doorway stretch** — 30 sec/position, 3 positions
- **Sleeper stretch** — 60 sec/side

Consistency beats intensity here — 10 min daily > 1 hour weekly.""",

    "sleep": """**Sleep is your #1 performance enhancer** — here's how to optimize it:

## Sleep Targets
```
Total sleep:     7.5–9 hours
Deep sleep:      1.5–2 hours (20%)
REM sleep:       1.5–2 hours (20%)
Bed consistency: ±30 min same time daily
```

## Optimization Protocol

### Environment
- **Temperature:** 16–19°C (61–67°F) — cooler is almost always better
- **Darkness:** Blackout curtains or sleep mask
- **Sound:** White/brown noise if you're a light sleeper

### Pre-Sleep Routine (90 min before bed)
1. Dim lights to 50% (triggers melatonin)
2. Avoid screens or use blue-light glasses
3. Magnesium glycinate 300mg
4. Light stretching or yoga
5. Review tomorrow (reduces rumination)

### Avoid
- **Caffeine:** No caffeine 8–10 hours before bed
- **Alcohol:** Disrupts deep sleep even in small amounts
- **Large meals:** Last large meal 3+ hours before sleep

## For Athletes
- Growth hormone peaks in **first 2 hours of sleep**
- **Sleep debt** reduces testosterone by up to 15%
- Add 30–60 min extra sleep on hard training days""",

    "default": """I'm your **FlexAI Coach** — your AI-powered personal trainer! Here's how I can help:

## What I Can Do

### 🏋️ Training
- Design custom workout programs
- Optimize exercise selection for your goals
- Explain form and technique for any exercise
- Plan deload weeks and periodization

### 🥗 Nutrition
- Create personalized meal plans
- Calculate macros and calories
- Suggest pre/post workout nutrition

### 📊 Progress
- Analyze your strength progression
- Identify weaknesses and imbalances
- Compare your lifts to population norms

### 😴 Recovery & Sleep
- Optimize sleep for performance
- Design recovery protocols
- Assess overtraining risk

### 💊 Supplements
- Evidence-based supplement recommendations
- Avoid wasted money on unproven products

### 🎯 Goal Setting
- Create SMART fitness goals
- Build accountability systems
- Design 12-week transformation plans

Just ask me anything — I'm here to help you reach your peak performance! 💪""",
}

# Checked in order; the first topic with a matching keyword wins.
TOPIC_KEYWORDS: Sequence[Tuple[str, Tuple[str, ...]]] = (
    ("workout", ("workout", "train", "exercise", "push", "pull", "leg", "chest", "back")),
    ("nutrition", ("nutrition", "diet", "eat", "food", "macro", "protein", "calori")),
    ("progress", ("progress", "analyz", "improve", "gain", "result")),
    ("goals", ("goal", "target", "plan", "roadmap")),
    ("recovery", ("recover", "sore", "rest", "deload")),
    ("supplements", ("supplement", "creatine", "protein powder", "pre-workout", "bcaa")),
    ("cardio", ("cardio", "run", "hiit", "zone", "endurance", "vo2")),
    ("form", ("form", "technique", "squat", "bench", "deadlift", "posture")),
    ("mobility", ("mobil", "flexib", "stretch", "tight", "hip")),
    ("sleep", ("sleep", "insomnia", "tired", "fatigue", "energy", "hrv")),
)

_WHITESPACE = re.compile(r"(\s+)")


class ResponseResolver:
    """Maps a user message to a canned coaching reply."""

    def __init__(self, responses: Optional[dict] = None):
        self.responses = responses or CANNED_RESPONSES

    def resolve_topic(self, message: str) -> str:
        """Return the topic a message falls under, or the default topic."""
        lower = message.lower()
        for topic, keywords in TOPIC_KEYWORDS:
            if any(keyword in lower for keyword in keywords):
                return topic
        return DEFAULT_TOPIC

    def resolve(self, message: str) -> str:
        return self.responses[self.resolve_topic(message)]


def chunk_response(text: str, words_per_chunk: int = 3) -> List[str]:
    """Split text into fragments of a few words, keeping whitespace intact.

    Words and whitespace runs both count as pieces, so joining the fragments
    gives back the original text.
    """
    if words_per_chunk < 1:
        raise ValueError("words_per_chunk must be at least 1")
    pieces = [piece for piece in _WHITESPACE.split(text) if piece]
    return [
        "".join(pieces[i : i + words_per_chunk])
        for i in range(0, len(pieces), words_per_chunk)
    ]


class CannedResponseGenerator:
    """Streams a canned reply fragment by fragment, like a live model would."""

    def __init__(
        self,
        resolver: Optional[ResponseResolver] = None,
        words_per_chunk: int = 3,
        first_delay: float = 0.0,
        interval: float = 0.0,
    ):
        self.resolver = resolver or ResponseResolver()
        self.words_per_chunk = words_per_chunk
        self.first_delay = first_delay
        self.interval = interval

    async def generate(self, message: str, *, model: Optional[AIModel] = None) -> AsyncIterator[str]:
        topic = self.resolver.resolve_topic(message)
        chunks = chunk_response(self.resolver.responses[topic], self.words_per_chunk)
        logger.debug("canned_response_resolved", topic=topic, chunks=len(chunks))

        if self.first_delay:
            await asyncio.sleep(self.first_delay)
        for index, chunk in enumerate(chunks):
            if index and self.interval:
                await asyncio.sleep(self.interval)
            yield chunk
