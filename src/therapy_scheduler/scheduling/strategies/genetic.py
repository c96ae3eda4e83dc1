"""Genetic algorithm over full-schedule gene vectors."""

import logging

from ..models import Algorithm
from ..objective import UNASSIGNED
from .base import OptimizerStrategy, SearchOutcome

logger = logging.getLogger(__name__)

# Share of offspring passed through constructive repair
REPAIR_RATE = 0.3


class GeneticAlgorithm(OptimizerStrategy):
    """
    Population search with tournament selection, uniform crossover and
    per-gene mutation. Elites are copied unchanged into the next generation.

    Stops at the generation cap, when the best fitness improves by less than
    the convergence threshold for ``stagnation_generations`` generations in a
    row, or when the deadline expires.
    """

    algorithm = Algorithm.GENETIC_ALGORITHM

    def search(self) -> SearchOutcome:
        settings = self.settings.genetic
        ev = self.evaluator
        if ev.size == 0:
            return SearchOutcome(genes=[])

        population = self._initial_population(settings.population_size)
        scores = [ev.fitness(g) for g in population]
        evaluations = len(population)
        best_index = max(range(len(population)), key=lambda i: scores[i])
        best_genes = list(population[best_index])
        best_fitness = scores[best_index]

        stagnant = 0
        generations = 0
        converged = False
        deadline_reached = False

        for generation in range(1, settings.generations + 1):
            if self.deadline.expired():
                deadline_reached = True
                break

            ranked = sorted(range(len(population)), key=lambda i: scores[i], reverse=True)
            next_population = [list(population[i]) for i in ranked[: settings.elite_count]]
            while len(next_population) < settings.population_size:
                parent_a = self._select(population, scores)
                parent_b = self._select(population, scores)
                if self.random.random() < settings.crossover_rate:
                    child = self._crossover(parent_a, parent_b)
                else:
                    child = list(parent_a)
                child = self._mutate(child)
                if self.random.random() < REPAIR_RATE:
                    child = self.build_feasible(child)
                next_population.append(child)

            population = next_population
            scores = [ev.fitness(g) for g in population]
            evaluations += len(population)
            generations = generation

            generation_best = max(range(len(population)), key=lambda i: scores[i])
            improvement = scores[generation_best] - best_fitness
            if improvement > 0:
                best_fitness = scores[generation_best]
                best_genes = list(population[generation_best])
            if improvement < settings.convergence_threshold:
                stagnant += 1
            else:
                stagnant = 0

            logger.debug(f"Generation {generation}: best fitness {best_fitness:.4f}")
            if stagnant >= settings.stagnation_generations:
                converged = True
                break
        else:
            converged = True

        logger.info(
            f"Genetic algorithm ran {generations} generations "
            f"({evaluations} evaluations), best fitness {best_fitness:.4f}"
        )
        return SearchOutcome(
            genes=best_genes,
            iterations=evaluations,
            generations=generations,
            converged=converged and not deadline_reached,
            deadline_reached=deadline_reached,
        )

    def _initial_population(self, size: int) -> list[list[int]]:
        """Seed with the repaired current schedule, constructive variants and random vectors."""
        population = [self.build_feasible(self.evaluator.initial_genes())]
        while len(population) < size:
            if len(population) < size // 2:
                population.append(self.build_feasible(randomized=True))
            else:
                population.append(self.random_genes())
        return population

    def _select(self, population: list[list[int]], scores: list[float]) -> list[int]:
        size = min(self.settings.genetic.tournament_size, len(population))
        contenders = self.random.sample(range(len(population)), size)
        best_index = max(contenders, key=lambda i: scores[i])
        return population[best_index]

    def _crossover(self, parent_a: list[int], parent_b: list[int]) -> list[int]:
        return [a if self.random.random() < 0.5 else b for a, b in zip(parent_a, parent_b)]

    def _mutate(self, genes: list[int]) -> list[int]:
        rate = self.settings.genetic.mutation_rate
        mutated = list(genes)
        for index, domain in enumerate(self.evaluator.domains):
            if len(domain) and self.random.random() < rate:
                mutated[index] = self.random.randrange(len(domain))
            elif not len(domain):
                mutated[index] = UNASSIGNED
        return mutated
